from __future__ import annotations

import unittest
import uuid
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.access import Principal
from app.audit import AuditContext, bind_audit_context
from app.db import Base
from app.errors import AccessDenied, NotFound, UniquenessViolation, ValidationError
from app.models import AuditLog, GeoFence, IpWhitelistEntry, Role
from app.services import policy_store


def _session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)


class PolicyStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.make_session = _session_factory()
        self.admin = Principal(id=uuid.uuid4(), role=Role.ADMIN)
        self.employee = Principal(id=uuid.uuid4(), role=Role.EMPLOYEE)
        self.db = self.make_session()
        bind_audit_context(self.db, AuditContext(actor_id=self.admin.id, ip_address="10.0.0.5"))

    def tearDown(self) -> None:
        self.db.close()

    def _count(self, model: type) -> int:
        with self.make_session() as db:
            return db.scalar(select(func.count()).select_from(model)) or 0

    def _audit_count(self, table_name: str) -> int:
        with self.make_session() as db:
            stmt = select(func.count()).select_from(AuditLog).where(AuditLog.table_name == table_name)
            return db.scalar(stmt) or 0

    def test_ip_addresses_are_stored_in_canonical_form(self) -> None:
        entry = policy_store.create_ip_whitelist_entry(
            self.db,
            self.admin,
            ip_address="2001:0DB8:0000::0001",
            description="branch office",
        )

        self.assertEqual(entry.ip_address, "2001:db8::1")
        self.assertEqual(entry.created_by, self.admin.id)
        self.assertEqual(self._audit_count("ip_whitelist"), 1)

    def test_duplicate_ip_is_rejected(self) -> None:
        policy_store.create_ip_whitelist_entry(self.db, self.admin, ip_address="1.2.3.4")

        with self.assertRaises(UniquenessViolation) as ctx:
            policy_store.create_ip_whitelist_entry(self.db, self.admin, ip_address=" 1.2.3.4 ")

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(self._count(IpWhitelistEntry), 1)
        self.assertEqual(self._audit_count("ip_whitelist"), 1)

    def test_renaming_an_ip_onto_an_existing_one_is_rejected(self) -> None:
        policy_store.create_ip_whitelist_entry(self.db, self.admin, ip_address="1.2.3.4")
        second = policy_store.create_ip_whitelist_entry(self.db, self.admin, ip_address="5.6.7.8")

        with self.assertRaises(UniquenessViolation):
            policy_store.update_ip_whitelist_entry(self.db, self.admin, second.id, {"ip_address": "1.2.3.4"})

    def test_invalid_ip_is_a_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            policy_store.create_ip_whitelist_entry(self.db, self.admin, ip_address="300.1.1.1")

        self.assertEqual(self._count(IpWhitelistEntry), 0)

    def test_non_positive_radius_is_rejected_without_writes(self) -> None:
        for radius in (0, -1):
            with self.subTest(radius=radius):
                with self.assertRaises(ValidationError):
                    policy_store.create_geo_fence(
                        self.db,
                        self.admin,
                        name="HQ",
                        latitude="10",
                        longitude="10",
                        radius=radius,
                    )

        self.assertEqual(self._count(GeoFence), 0)
        self.assertEqual(self._audit_count("geo_fences"), 0)

    def test_radius_beyond_integer_column_is_rejected_without_writes(self) -> None:
        with self.assertRaises(ValidationError):
            policy_store.create_geo_fence(
                self.db,
                self.admin,
                name="HQ",
                latitude="10",
                longitude="10",
                radius=2**31,
            )

        self.assertEqual(self._count(GeoFence), 0)
        self.assertEqual(self._audit_count("geo_fences"), 0)

    def test_update_to_non_positive_radius_leaves_fence_untouched(self) -> None:
        fence = policy_store.create_geo_fence(self.db, self.admin, name="HQ", latitude="10", longitude="10", radius=5)

        with self.assertRaises(ValidationError):
            policy_store.update_geo_fence(self.db, self.admin, fence.id, {"radius": 0, "name": "Moved"})

        with self.make_session() as db:
            stored = db.get(GeoFence, fence.id)
            self.assertEqual(stored.radius, 5)
            self.assertEqual(stored.name, "HQ")

    def test_fence_coordinates_keep_eight_fraction_digits(self) -> None:
        fence = policy_store.create_geo_fence(
            self.db,
            self.admin,
            name="Depot",
            latitude=Decimal("41.00820000"),
            longitude=Decimal("-128.97840001"),
            radius=1,
        )

        with self.make_session() as db:
            stored = db.get(GeoFence, fence.id)
            self.assertEqual(stored.latitude, Decimal("41.0082"))
            self.assertEqual(stored.longitude, Decimal("-128.97840001"))

    def test_employees_cannot_change_policy(self) -> None:
        with self.assertRaises(AccessDenied):
            policy_store.create_ip_whitelist_entry(self.db, self.employee, ip_address="1.2.3.4")
        with self.assertRaises(AccessDenied):
            policy_store.create_geo_fence(self.db, self.employee, name="HQ", latitude=0, longitude=0, radius=1)

        fence = policy_store.create_geo_fence(self.db, self.admin, name="HQ", latitude=0, longitude=0, radius=1)
        with self.assertRaises(AccessDenied):
            policy_store.delete_geo_fence(self.db, self.employee, fence.id)

        self.assertEqual(self._count(IpWhitelistEntry), 0)
        self.assertEqual(self._count(GeoFence), 1)

    def test_employees_can_read_policy(self) -> None:
        policy_store.create_ip_whitelist_entry(self.db, self.admin, ip_address="1.2.3.4")
        policy_store.create_geo_fence(self.db, self.admin, name="HQ", latitude=0, longitude=0, radius=1)

        self.assertEqual([item.ip_address for item in policy_store.list_ip_whitelist(self.db, self.employee)], ["1.2.3.4"])
        self.assertEqual([item.name for item in policy_store.list_geo_fences(self.db, self.employee)], ["HQ"])

    def test_missing_rows_raise_not_found(self) -> None:
        with self.assertRaises(NotFound):
            policy_store.delete_ip_whitelist_entry(self.db, self.admin, uuid.uuid4())
        with self.assertRaises(NotFound):
            policy_store.update_geo_fence(self.db, self.admin, uuid.uuid4(), {"radius": 3})


if __name__ == "__main__":
    unittest.main()
