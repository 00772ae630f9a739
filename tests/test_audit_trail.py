from __future__ import annotations

import unittest
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.access import Principal
from app.audit import AuditContext, bind_audit_context, row_snapshot
from app.db import Base
from app.errors import AuditWriteFailure, PersistenceFailure
from app.models import AuditAction, AuditLog, EntryType, GeoFence, Profile, Role, Schedule, TimeEntry
from app.services.policy_store import create_geo_fence, delete_geo_fence, update_geo_fence
from app.services.profiles import purge_profile, set_role


def _session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False)


class AuditTrailTests(unittest.TestCase):
    def setUp(self) -> None:
        self.make_session = _session_factory()
        self.admin_id = uuid.uuid4()
        self.employee_id = uuid.uuid4()
        with self.make_session() as db:
            db.add_all(
                [
                    Profile(id=self.admin_id, email="admin@example.com", role=Role.ADMIN),
                    Profile(id=self.employee_id, email="worker@example.com", role=Role.EMPLOYEE),
                ]
            )
            db.commit()
        self.admin = Principal(id=self.admin_id, role=Role.ADMIN)
        self.db = self.make_session()
        bind_audit_context(self.db, AuditContext(actor_id=self.admin_id, ip_address="10.0.0.5"))

    def tearDown(self) -> None:
        self.db.close()

    def _audits(self, table_name: str) -> list[AuditLog]:
        with self.make_session() as db:
            stmt = select(AuditLog).where(AuditLog.table_name == table_name).order_by(AuditLog.created_at)
            return list(db.scalars(stmt).all())

    def _audits_for(self, table_name: str, action: AuditAction) -> list[AuditLog]:
        return [item for item in self._audits(table_name) if item.action == action]

    def test_profile_inserts_without_context_are_system_actions(self) -> None:
        inserts = self._audits_for("profiles", AuditAction.INSERT)

        self.assertEqual({item.record_id for item in inserts}, {self.admin_id, self.employee_id})
        self.assertTrue(all(item.user_id is None for item in inserts))
        self.assertTrue(all(item.ip_address is None for item in inserts))

    def test_update_records_old_and_new_snapshots(self) -> None:
        fence = create_geo_fence(self.db, self.admin, name="HQ", latitude="10", longitude="10", radius=500)

        update_geo_fence(self.db, self.admin, fence.id, {"radius": 800})

        updates = self._audits_for("geo_fences", AuditAction.UPDATE)
        self.assertEqual(len(updates), 1)
        audit = updates[0]
        self.assertEqual(audit.record_id, fence.id)
        self.assertEqual(audit.user_id, self.admin_id)
        self.assertEqual(audit.ip_address, "10.0.0.5")
        self.assertEqual(audit.old_data["radius"], 500)
        self.assertEqual(audit.new_data["radius"], 800)
        self.assertEqual(audit.old_data["latitude"], "10.00000000")
        self.assertEqual(audit.new_data["name"], "HQ")

    def test_noop_update_writes_no_audit_record(self) -> None:
        fence = create_geo_fence(self.db, self.admin, name="HQ", latitude="10", longitude="10", radius=500)

        update_geo_fence(self.db, self.admin, fence.id, {})

        self.assertEqual(self._audits_for("geo_fences", AuditAction.UPDATE), [])

    def test_delete_records_prior_snapshot_only(self) -> None:
        fence = create_geo_fence(self.db, self.admin, name="HQ", latitude="10", longitude="10", radius=500)
        fence_id = fence.id

        delete_geo_fence(self.db, self.admin, fence_id)

        deletes = self._audits_for("geo_fences", AuditAction.DELETE)
        self.assertEqual(len(deletes), 1)
        self.assertEqual(deletes[0].record_id, fence_id)
        self.assertEqual(deletes[0].old_data["id"], str(fence_id))
        self.assertEqual(deletes[0].old_data["radius"], 500)
        self.assertIsNone(deletes[0].new_data)

    def test_failed_audit_write_rolls_back_the_change(self) -> None:
        with patch("app.audit._insert_audit_rows", side_effect=OperationalError("insert", {}, Exception("disk full"))):
            with self.assertRaises(AuditWriteFailure) as ctx:
                create_geo_fence(self.db, self.admin, name="HQ", latitude="10", longitude="10", radius=500)

        self.assertIsInstance(ctx.exception, PersistenceFailure)
        self.assertEqual(ctx.exception.status_code, 503)
        with self.make_session() as db:
            self.assertEqual(db.scalar(select(func.count()).select_from(GeoFence)), 0)
        self.assertEqual(self._audits("geo_fences"), [])

    def test_session_is_usable_after_failed_audit_write(self) -> None:
        with patch("app.audit._insert_audit_rows", side_effect=OperationalError("insert", {}, Exception("disk full"))):
            with self.assertRaises(AuditWriteFailure):
                create_geo_fence(self.db, self.admin, name="HQ", latitude="10", longitude="10", radius=500)

        fence = create_geo_fence(self.db, self.admin, name="HQ", latitude="10", longitude="10", radius=500)

        self.assertEqual([item.record_id for item in self._audits("geo_fences")], [fence.id])

    def test_set_role_on_unbound_session_has_null_actor(self) -> None:
        with self.make_session() as db:
            set_role(db, self.employee_id, Role.ADMIN)

        updates = self._audits_for("profiles", AuditAction.UPDATE)
        self.assertEqual(len(updates), 1)
        self.assertIsNone(updates[0].user_id)
        self.assertEqual(updates[0].old_data["role"], "employee")
        self.assertEqual(updates[0].new_data["role"], "admin")

    def test_purge_deletes_owned_rows_and_audits_each_one(self) -> None:
        start = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
        with self.make_session() as db:
            entry = TimeEntry(user_id=self.employee_id, entry_type=EntryType.CLOCK_IN, ip_address="1.2.3.4")
            own_schedule = Schedule(
                user_id=self.employee_id,
                start_time=start,
                end_time=start + timedelta(hours=8),
                created_by=self.admin_id,
            )
            # Authored by the employee for someone else: survives with its author cleared.
            authored_schedule = Schedule(
                user_id=self.admin_id,
                start_time=start,
                end_time=start + timedelta(hours=8),
                created_by=self.employee_id,
            )
            db.add_all([entry, own_schedule, authored_schedule])
            db.commit()
            entry_id, own_schedule_id, authored_schedule_id = entry.id, own_schedule.id, authored_schedule.id

        with self.make_session() as db:
            purge_profile(db, self.employee_id)

        with self.make_session() as db:
            self.assertIsNone(db.get(Profile, self.employee_id))
            self.assertIsNone(db.get(TimeEntry, entry_id))
            self.assertIsNone(db.get(Schedule, own_schedule_id))
            survivor = db.get(Schedule, authored_schedule_id)
            self.assertIsNotNone(survivor)
            self.assertIsNone(survivor.created_by)

        self.assertEqual([item.record_id for item in self._audits_for("profiles", AuditAction.DELETE)], [self.employee_id])
        self.assertEqual([item.record_id for item in self._audits_for("time_entries", AuditAction.DELETE)], [entry_id])
        self.assertEqual(
            {item.record_id for item in self._audits_for("schedules", AuditAction.DELETE)},
            {own_schedule_id},
        )
        schedule_updates = self._audits_for("schedules", AuditAction.UPDATE)
        self.assertEqual([item.record_id for item in schedule_updates], [authored_schedule_id])
        self.assertEqual(schedule_updates[0].old_data["created_by"], str(self.employee_id))
        self.assertIsNone(schedule_updates[0].new_data["created_by"])

    def test_row_snapshot_is_json_ready(self) -> None:
        fence = GeoFence(
            id=uuid.uuid4(),
            name="Depot",
            latitude=Decimal("41.0082"),
            longitude=Decimal("28.9784"),
            radius=3,
        )

        snapshot = row_snapshot(fence)

        self.assertEqual(snapshot["id"], str(fence.id))
        self.assertEqual(snapshot["latitude"], "41.00820000")
        self.assertEqual(snapshot["longitude"], "28.97840000")
        self.assertEqual(snapshot["radius"], 3)


if __name__ == "__main__":
    unittest.main()
