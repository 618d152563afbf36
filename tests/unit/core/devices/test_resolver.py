"""
Tests for dock inventory resolution.

Tests cover:
- deduplicate: sub-interface suppression, grouping, idempotence
- DeviceResolver: priority order, short-circuit, failure recovery, model filter
"""

import pytest
from unittest.mock import MagicMock

from dock_inventory.core.devices import (
    AttemptOutcome,
    DetectionFailure,
    DetectionMethod,
    DetectionStrategy,
    DeviceResolver,
    InventoryEntry,
    UNKNOWN,
    build_model_filter,
    deduplicate,
    is_multi_function_interface,
)


def _strategies(*batches):
    """One MagicMock-backed strategy per DetectionMethod, in priority order."""
    return [
        DetectionStrategy(method, MagicMock(return_value=list(batch)))
        for method, batch in zip(DetectionMethod, batches)
    ]


class TestMultiFunctionInterface:

    @pytest.mark.parametrize("device_id", [
        r"USB\VID_413C&PID_B06E&MI_02\6&2A9E4C1&0&0002",
        r"usb\vid_413c&pid_b06e&mi_00\7&1",
    ])
    def test_detects_marker(self, device_id):
        assert is_multi_function_interface(device_id)

    @pytest.mark.parametrize("device_id", [
        r"USB\VID_413C&PID_B06E\ABC123",
        "",
        "1-2.3",
    ])
    def test_plain_devices(self, device_id):
        assert not is_multi_function_interface(device_id)


class TestDeduplicate:

    def test_empty_input(self):
        assert deduplicate([]) == []

    def test_sub_interface_suppressed_by_parent(self, make_observation):
        observations = [
            make_observation("X", UNKNOWN, "USB\\VID_1&MI_02\\"),
            make_observation("X", "ABC123", "USB\\VID_1\\"),
        ]

        entries = deduplicate(observations)

        assert len(entries) == 1
        assert entries[0].serial_number == "ABC123"

    def test_sub_interface_without_parent_survives(self, make_observation):
        entries = deduplicate([make_observation("X", UNKNOWN, "USB\\VID_1&MI_02\\")])

        assert len(entries) == 1
        assert entries[0].serial_number == UNKNOWN

    def test_parent_of_other_model_does_not_suppress(self, make_observation):
        observations = [
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_02\1"),
            make_observation("Dell WD-22TB4", "SER1", r"USB\VID_413C&PID_B0B0\SER1"),
        ]

        entries = deduplicate(observations)

        assert [e.model for e in entries] == ["Dell WD-19S", "Dell WD-22TB4"]

    def test_distinct_serials_kept(self, make_observation):
        observations = [
            make_observation("Dell WD-19S", "AAA111", "a"),
            make_observation("Dell WD-19S", "BBB222", "b"),
        ]

        entries = deduplicate(observations)

        assert {e.serial_number for e in entries} == {"AAA111", "BBB222"}

    def test_same_serial_merged(self, make_observation):
        observations = [
            make_observation("Dell WD-19S", "AAA111", "a"),
            make_observation("Dell WD-19S", "AAA111", "b"),
        ]

        entries = deduplicate(observations)

        assert len(entries) == 1
        assert entries[0].raw_device_id == "a"
        assert entries[0].observation_count == 2

    def test_interfaces_of_one_dock_merge_by_product_id(self, make_observation):
        observations = [
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_00\6&1", product_id="B06E"),
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_01\6&2", product_id="b06e"),
        ]

        entries = deduplicate(observations)

        assert len(entries) == 1
        assert entries[0].product_id == "B06E"

    def test_unknown_serials_without_product_id_stay_separate(self, make_observation):
        observations = [
            make_observation("Dell Thunderbolt Dock", UNKNOWN, r"THUNDERBOLT\1"),
            make_observation("Dell Thunderbolt Dock", UNKNOWN, r"THUNDERBOLT\2"),
        ]

        assert len(deduplicate(observations)) == 2

    def test_first_seen_order(self, make_observation):
        observations = [
            make_observation("C", "S3", "c"),
            make_observation("A", "S1", "a"),
            make_observation("B", "S2", "b"),
            make_observation("A", "S1", "a2"),
        ]

        assert [e.serial_number for e in deduplicate(observations)] == ["S3", "S1", "S2"]

    def test_count_bounds(self, make_observation):
        observations = [
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_00\1", product_id="B06E"),
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_01\2", product_id="B06E"),
            make_observation("Dell WD-19S", "CN0ABC", r"USB\VID_413C&PID_B06E\CN0ABC", product_id="B06E"),
            make_observation("Dell WD-22TB4", "CN0DEF", "x"),
        ]

        entries = deduplicate(observations)

        assert 1 <= len(entries) <= len(observations)

    def test_idempotent(self, make_observation):
        observations = [
            make_observation("X", UNKNOWN, "USB\\VID_1&MI_02\\"),
            make_observation("X", "ABC123", "USB\\VID_1\\"),
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_00\1", product_id="B06E"),
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_01\2", product_id="B06E"),
            make_observation("Y", "S1", "y1"),
            make_observation("Y", "S1", "y2"),
        ]

        once = deduplicate(observations)

        assert deduplicate(once) == once

    def test_input_not_mutated(self, make_observation):
        observations = [make_observation("X", "S1", "a"), make_observation("X", "S1", "b")]
        snapshot = list(observations)

        deduplicate(observations)

        assert observations == snapshot

    def test_returns_inventory_entries(self, make_observation):
        entries = deduplicate([make_observation("X", "S1", "a")])

        assert isinstance(entries[0], InventoryEntry)
        assert entries[0].method is DetectionMethod.USB_ENUMERATION

    def test_custom_sub_interface_predicate(self, make_observation):
        observations = [
            make_observation("X", UNKNOWN, "child"),
            make_observation("X", "S1", "parent"),
        ]

        entries = deduplicate(observations, is_sub_interface=lambda raw: raw == "child")

        assert [e.raw_device_id for e in entries] == ["parent"]


class TestDeviceResolver:

    def test_primary_short_circuits(self, make_observation):
        primary = make_observation("Dell WD-19S", "CN0ABC", method=DetectionMethod.PRIMARY_MANAGEMENT_AGENT)
        strategies = _strategies([primary], [], [make_observation()], [])

        entries = DeviceResolver().resolve(strategies)

        assert len(entries) == 1
        assert entries[0].serial_number == "CN0ABC"
        strategies[0].detect.assert_called_once_with()
        for strategy in strategies[1:]:
            strategy.detect.assert_not_called()

    def test_all_empty(self):
        strategies = _strategies([], [], [], [])

        assert DeviceResolver().resolve(strategies) == []
        for strategy in strategies:
            strategy.detect.assert_called_once_with()

    def test_falls_back_to_usb(self, make_observation):
        usb = [
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_00\1", product_id="B06E"),
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E&MI_02\2", product_id="B06E"),
        ]
        strategies = _strategies([], [], usb, [])

        inventory = DeviceResolver().resolve_inventory(strategies)

        assert inventory.dock_count == 1
        assert inventory.method is DetectionMethod.USB_ENUMERATION
        strategies[3].detect.assert_not_called()

    def test_failure_is_treated_as_empty(self, make_observation):
        strategies = _strategies([], [], [], [make_observation("Dell TB-16", "TB1")])
        strategies[0] = DetectionStrategy(
            DetectionMethod.PRIMARY_MANAGEMENT_AGENT,
            MagicMock(side_effect=DetectionFailure("namespace missing")),
        )

        inventory = DeviceResolver().resolve_inventory(strategies)

        assert inventory.dock_count == 1
        assert inventory.failed_methods == [DetectionMethod.PRIMARY_MANAGEMENT_AGENT]
        assert inventory.attempts[0].error == "namespace missing"

    def test_unexpected_exception_does_not_escape(self):
        strategies = _strategies([], [], [], [])
        strategies[2] = DetectionStrategy(DetectionMethod.USB_ENUMERATION, MagicMock(side_effect=RuntimeError("boom")))

        inventory = DeviceResolver().resolve_inventory(strategies)

        assert not inventory.has_docks
        assert inventory.attempts[2].outcome is AttemptOutcome.FAILED
        assert "RuntimeError" in inventory.attempts[2].error

    def test_attempts_record_skipped_methods(self, make_observation):
        strategies = _strategies([], [make_observation("Dell WD-19 Dock", "S1")], [], [])

        inventory = DeviceResolver().resolve_inventory(strategies)

        assert [a.outcome for a in inventory.attempts] == [
            AttemptOutcome.EMPTY,
            AttemptOutcome.FOUND,
            AttemptOutcome.SKIPPED,
            AttemptOutcome.SKIPPED,
        ]
        assert [a.method for a in inventory.attempts] == list(DetectionMethod)

    def test_model_filter_applied_before_short_circuit(self, make_observation):
        keyboard = make_observation("Dell KB216 Wired Keyboard", UNKNOWN, r"USB\VID_413C&PID_2113\5&1")
        dock = make_observation("Dell WD-19S", "CN0ABC")
        strategies = _strategies([], [], [keyboard], [dock])

        entries = DeviceResolver(model_filter=build_model_filter()).resolve(strategies)

        assert [e.serial_number for e in entries] == ["CN0ABC"]
        strategies[3].detect.assert_called_once_with()

    def test_accepts_plain_callables(self, make_observation):
        entries = DeviceResolver().resolve([lambda: [], lambda: [make_observation("X", "S1")]])

        assert len(entries) == 1

    def test_no_methods(self):
        inventory = DeviceResolver().resolve_inventory([])

        assert inventory.entries == ()
        assert inventory.method is None

    def test_generator_of_methods(self, make_observation):
        methods = (strategy for strategy in _strategies([make_observation("X", "S1")], [], [], []))

        inventory = DeviceResolver().resolve_inventory(methods)

        assert inventory.dock_count == 1
        assert [a.outcome for a in inventory.attempts][1:] == [AttemptOutcome.SKIPPED] * 3

    def test_usb_interfaces_without_marker_count_as_one_dock(self, make_observation):
        usb = [
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E\5&1&0", product_id="B06E"),
            make_observation("Dell WD-19S", UNKNOWN, r"USB\VID_413C&PID_B06E\5&1&1", product_id="B06E"),
        ]
        strategies = _strategies([], [], usb, [])

        inventory = DeviceResolver().resolve_inventory(strategies)

        assert inventory.dock_count == 1
        assert inventory.entries[0].raw_device_id == r"USB\VID_413C&PID_B06E\5&1&0"
        assert inventory.entries[0].observation_count == 2
