from datetime import date
from decimal import Decimal

from sqlalchemy import select

from app.db import SessionLocal, engine
from app.models import (
    Base,
    Client,
    ClientCategory,
    Principal,
    PrincipalRole,
    ProjectStatus,
    Supplier,
)
from app.security.passwords import hash_password
from app.services.project_service import ProjectInput, create_project

DEMO_USERS = (
    ('admin', 'adminpass', PrincipalRole.ADMINISTRATOR),
    ('manager', 'managerpass', PrincipalRole.MANAGER),
    ('viewer', 'viewerpass', PrincipalRole.VIEWER),
)


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        for username, password, role in DEMO_USERS:
            existing = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
            if not existing:
                db.add(
                    Principal(
                        username=username,
                        display_name=username.title(),
                        password_hash=hash_password(password),
                        role=role,
                        active=True,
                    )
                )

        client = db.execute(select(Client).where(Client.name == 'Demo Client')).scalar_one_or_none()
        if not client:
            category = ClientCategory(name='Private')
            db.add(category)
            db.flush()
            client = Client(name='Demo Client', email='client@example.com', category_id=category.id)
            supplier = Supplier(name='Demo Builders Supply')
            db.add_all([client, supplier])
            db.flush()
            create_project(
                db,
                data=ProjectInput(
                    client_id=client.id,
                    name='Kitchen renovation',
                    status=ProjectStatus.ACTIVE,
                    start_date=date.today(),
                    total_value=Decimal('25000'),
                    supplier_ids=(supplier.id,),
                ),
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
