from __future__ import annotations

import pytest

from adb_fakes import FALSE_PARCEL, NFC_PROBE, POWER_PROBE, TRUE_PARCEL, TRUST_PROBE, ScriptedADB
from droidbooth.probe import (
    BinaryResultProber,
    NfcStateProber,
    ParseFailure,
    StateNotFound,
    UnexpectedState,
    build_prober,
    parse_binary_result,
    parse_nfc_screen_state,
)


def _nfc_dump(state: str) -> list[str]:
    return [
        "mState=on",
        "mIsZeroClickRequested=false",
        f"  Screen State: {state}  ",
        "mNfcUnlockManager=...",
    ]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("ON_UNLOCKED", (True, False)),
        ("ON_LOCKED", (True, True)),
        ("OFF_UNLOCKED", (False, False)),
        ("OFF_LOCKED", (False, True)),
        ("on_locked", (True, True)),
    ],
)
def test_nfc_screen_state_mapping(value: str, expected: tuple[bool, bool]) -> None:
    assert parse_nfc_screen_state(_nfc_dump(value)) == expected


def test_nfc_unknown_state_is_rejected() -> None:
    with pytest.raises(UnexpectedState):
        parse_nfc_screen_state(_nfc_dump("ON_SOMETIMES"))


def test_nfc_missing_state_line() -> None:
    with pytest.raises(StateNotFound):
        parse_nfc_screen_state(["mState=on"])


def test_binary_result_reads_first_result_line() -> None:
    assert parse_binary_result(["", *TRUE_PARCEL]) is True
    assert parse_binary_result(FALSE_PARCEL) is False
    assert parse_binary_result(["result: Parcel(00000000 00000001)"]) is True


def test_binary_result_without_result_line() -> None:
    with pytest.raises(ParseFailure):
        parse_binary_result(["Service power: not found"])


@pytest.mark.asyncio
async def test_binary_prober_runs_service_calls() -> None:
    adb = ScriptedADB()
    adb.script(POWER_PROBE, TRUE_PARCEL)
    adb.script(TRUST_PROBE, TRUE_PARCEL)
    prober = build_prober(adb, use_nfc_screen_api=False)

    assert isinstance(prober, BinaryResultProber)
    assert await prober.is_interactive() is True
    assert await prober.is_locked() is True
    assert await prober.is_interactive_and_unlocked() is False
    assert adb.calls == [POWER_PROBE, TRUST_PROBE, POWER_PROBE, TRUST_PROBE]


@pytest.mark.asyncio
async def test_nfc_prober_combined_probe_uses_single_dump() -> None:
    adb = ScriptedADB()
    adb.script(NFC_PROBE, _nfc_dump("ON_UNLOCKED"))
    prober = build_prober(adb, use_nfc_screen_api=True)

    assert isinstance(prober, NfcStateProber)
    assert await prober.is_interactive_and_unlocked() is True
    assert adb.calls == [NFC_PROBE]


@pytest.mark.asyncio
async def test_nfc_prober_individual_probes() -> None:
    adb = ScriptedADB()
    adb.script(NFC_PROBE, _nfc_dump("OFF_LOCKED"))
    prober = NfcStateProber(adb)

    assert await prober.is_interactive() is False
    assert await prober.is_locked() is True
