from __future__ import annotations

import unittest
from dataclasses import dataclass
from decimal import Decimal

from app.services.location import evaluate_location, fence_contains, normalize_ip


@dataclass
class _Fence:
    latitude: Decimal
    longitude: Decimal
    radius: int


OFFICE_FENCE = _Fence(latitude=Decimal("10"), longitude=Decimal("10"), radius=500)


class FenceContainsTests(unittest.TestCase):
    def test_center_is_inside(self) -> None:
        self.assertTrue(fence_contains(center_lat=10, center_lon=10, radius=500, lat="10.0", lon="10.0"))

    def test_boundary_point_counts_as_inside(self) -> None:
        # 3-4-5 triangle: exactly on the circle.
        self.assertTrue(fence_contains(center_lat=0, center_lon=0, radius=5, lat=4, lon=3))
        self.assertTrue(fence_contains(center_lat=0, center_lon=0, radius=1, lat="0", lon="1"))

    def test_points_within_edge_tolerance_count_as_inside(self) -> None:
        self.assertTrue(fence_contains(center_lat=0, center_lon=0, radius=1, lat="0", lon="1.00000001"))
        self.assertTrue(fence_contains(center_lat=0, center_lon=0, radius=1, lat="1e-8", lon="1"))
        self.assertTrue(fence_contains(center_lat=0, center_lon=0, radius=1, lat="0", lon="1.0000009"))

    def test_point_beyond_edge_tolerance_is_rejected(self) -> None:
        self.assertFalse(fence_contains(center_lat=0, center_lon=0, radius=1, lat="0", lon="1.00001"))
        self.assertFalse(fence_contains(center_lat=0, center_lon=0, radius=1, lat="0", lon="1.0000011"))

    def test_radius_is_compared_in_raw_degrees(self) -> None:
        # One degree of latitude is ~111 km, yet a radius of 1 covers it.
        self.assertTrue(fence_contains(center_lat=41, center_lon=29, radius=1, lat=42, lon=29))
        self.assertFalse(fence_contains(center_lat=41, center_lon=29, radius=1, lat=42, lon=30))


class NormalizeIpTests(unittest.TestCase):
    def test_canonicalizes_ipv6(self) -> None:
        self.assertEqual(normalize_ip("2001:DB8:0:0:0:0:0:1"), "2001:db8::1")

    def test_leaves_unparseable_input_stripped(self) -> None:
        self.assertEqual(normalize_ip("  not-an-ip "), "not-an-ip")


class EvaluateLocationTests(unittest.TestCase):
    def test_empty_policy_denies_everything(self) -> None:
        decision = evaluate_location([], [], lat=Decimal("10"), lon=Decimal("10"), ip_address="1.2.3.4")

        self.assertFalse(decision.ip_allowed)
        self.assertFalse(decision.geo_allowed)
        self.assertFalse(decision.allowed)

    def test_whitelisted_ip_inside_fence_is_allowed(self) -> None:
        decision = evaluate_location(
            ["1.2.3.4"],
            [OFFICE_FENCE],
            lat=Decimal("10.0"),
            lon=Decimal("10.0"),
            ip_address="1.2.3.4",
        )

        self.assertTrue(decision.allowed)

    def test_unknown_ip_is_denied_even_inside_fence(self) -> None:
        decision = evaluate_location(
            ["1.2.3.4"],
            [OFFICE_FENCE],
            lat=Decimal("10.0"),
            lon=Decimal("10.0"),
            ip_address="9.9.9.9",
        )

        self.assertFalse(decision.ip_allowed)
        self.assertTrue(decision.geo_allowed)
        self.assertFalse(decision.allowed)

    def test_whitelisted_ip_outside_every_fence_is_denied(self) -> None:
        small_fence = _Fence(latitude=Decimal("10"), longitude=Decimal("10"), radius=1)
        decision = evaluate_location(
            ["1.2.3.4"],
            [small_fence],
            lat=Decimal("12"),
            lon=Decimal("10"),
            ip_address="1.2.3.4",
        )

        self.assertTrue(decision.ip_allowed)
        self.assertFalse(decision.geo_allowed)

    def test_missing_coordinates_fail_the_geo_check(self) -> None:
        decision = evaluate_location(["1.2.3.4"], [OFFICE_FENCE], lat=None, lon=None, ip_address="1.2.3.4")

        self.assertTrue(decision.ip_allowed)
        self.assertFalse(decision.allowed)

    def test_missing_ip_fails_the_ip_check(self) -> None:
        decision = evaluate_location(["1.2.3.4"], [OFFICE_FENCE], lat=10, lon=10, ip_address=None)

        self.assertFalse(decision.allowed)

    def test_ip_match_ignores_textual_form(self) -> None:
        decision = evaluate_location(
            ["2001:db8::1"],
            [OFFICE_FENCE],
            lat=10,
            lon=10,
            ip_address="2001:0DB8::0001",
        )

        self.assertTrue(decision.allowed)


if __name__ == "__main__":
    unittest.main()
