from __future__ import annotations

import unittest
import uuid

from app.access import Operation, Principal, Resource, ensure_allowed, is_allowed
from app.errors import AccessDenied
from app.models import Role

ADMIN = Principal(id=uuid.uuid4(), role=Role.ADMIN)
EMPLOYEE = Principal(id=uuid.uuid4(), role=Role.EMPLOYEE)
OTHER_ID = uuid.uuid4()


class AccessRuleTests(unittest.TestCase):
    def test_policy_tables_are_readable_by_anyone_but_writable_only_by_admins(self) -> None:
        for resource in (Resource.IP_WHITELIST, Resource.GEO_FENCES):
            self.assertTrue(is_allowed(EMPLOYEE, resource, Operation.READ))
            self.assertTrue(is_allowed(ADMIN, resource, Operation.READ))
            for operation in (Operation.INSERT, Operation.UPDATE, Operation.DELETE):
                self.assertTrue(is_allowed(ADMIN, resource, operation))
                self.assertFalse(is_allowed(EMPLOYEE, resource, operation))

    def test_time_entries_insert_is_self_only_for_every_role(self) -> None:
        self.assertTrue(is_allowed(EMPLOYEE, Resource.TIME_ENTRIES, Operation.INSERT, owner_id=EMPLOYEE.id))
        self.assertFalse(is_allowed(EMPLOYEE, Resource.TIME_ENTRIES, Operation.INSERT, owner_id=OTHER_ID))
        self.assertTrue(is_allowed(ADMIN, Resource.TIME_ENTRIES, Operation.INSERT, owner_id=ADMIN.id))
        self.assertFalse(is_allowed(ADMIN, Resource.TIME_ENTRIES, Operation.INSERT, owner_id=OTHER_ID))
        self.assertFalse(is_allowed(EMPLOYEE, Resource.TIME_ENTRIES, Operation.INSERT, owner_id=None))

    def test_time_entries_are_never_updated_or_deleted(self) -> None:
        for principal in (ADMIN, EMPLOYEE):
            for operation in (Operation.UPDATE, Operation.DELETE):
                self.assertFalse(
                    is_allowed(principal, Resource.TIME_ENTRIES, operation, owner_id=principal.id)
                )

    def test_owned_rows_are_readable_by_owner_and_admin(self) -> None:
        for resource in (Resource.PROFILES, Resource.TIME_ENTRIES, Resource.SCHEDULES):
            self.assertTrue(is_allowed(EMPLOYEE, resource, Operation.READ, owner_id=EMPLOYEE.id))
            self.assertFalse(is_allowed(EMPLOYEE, resource, Operation.READ, owner_id=OTHER_ID))
            self.assertTrue(is_allowed(ADMIN, resource, Operation.READ, owner_id=OTHER_ID))
            self.assertTrue(is_allowed(ADMIN, resource, Operation.READ))

    def test_schedules_are_managed_by_admins(self) -> None:
        for operation in (Operation.INSERT, Operation.UPDATE, Operation.DELETE):
            self.assertTrue(is_allowed(ADMIN, Resource.SCHEDULES, operation, owner_id=OTHER_ID))
            self.assertFalse(is_allowed(EMPLOYEE, Resource.SCHEDULES, operation, owner_id=EMPLOYEE.id))

    def test_profiles_cannot_be_deleted_through_access_rules(self) -> None:
        self.assertFalse(is_allowed(ADMIN, Resource.PROFILES, Operation.DELETE, owner_id=OTHER_ID))
        self.assertFalse(is_allowed(EMPLOYEE, Resource.PROFILES, Operation.UPDATE, owner_id=EMPLOYEE.id))

    def test_audit_logs_are_admin_read_only(self) -> None:
        self.assertTrue(is_allowed(ADMIN, Resource.AUDIT_LOGS, Operation.READ))
        self.assertFalse(is_allowed(EMPLOYEE, Resource.AUDIT_LOGS, Operation.READ))
        for operation in (Operation.INSERT, Operation.UPDATE, Operation.DELETE):
            self.assertFalse(is_allowed(ADMIN, Resource.AUDIT_LOGS, operation))

    def test_ensure_allowed_raises_access_denied(self) -> None:
        with self.assertRaises(AccessDenied) as ctx:
            ensure_allowed(EMPLOYEE, Resource.GEO_FENCES, Operation.INSERT)

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.code, "ACCESS_DENIED")
        ensure_allowed(ADMIN, Resource.GEO_FENCES, Operation.INSERT)


if __name__ == "__main__":
    unittest.main()
