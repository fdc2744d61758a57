import asyncio
from datetime import date, timedelta

from eventpass import config
from eventpass.infra.sql import create_schema, make_async_engine
from eventpass.model import Base, Event, Store
from eventpass import qr

# Config
DemoEvent = {
    "name": "Sunset Sessions",
    "event_date": date.today() + timedelta(days=30),
    "event_time": "19:30",
    "venue": "Beach Arena, Goa",
    "description": "Live music by the sea.",
}
DemoTickets = [
    {"name": "General", "price": 49_900, "total_quantity": 500},
    {"name": "VIP", "price": 149_900, "total_quantity": 50},
]


async def seed_events(store: Store):
    ev, tickets = await store.create_event(dict(DemoEvent), DemoTickets)
    await store.update_where(Event, (Event.id == ev.id,),
                             {"qr_artifact": qr.event_qr_artifact(ev.code)})
    print(f'✅ event {ev.code} created with {len(tickets)} ticket types')
    print(f'   deep link: {qr.deep_link_target(ev.code)}')
    return ev


async def main():
    engine, SessionAsync, _, gated = make_async_engine(config.DATABASE_URL)
    await create_schema(engine, Base.metadata)
    await seed_events(Store(SessionAsync, gated))
    await engine.dispose()


if __name__ == '__main__':
    asyncio.run(main())
