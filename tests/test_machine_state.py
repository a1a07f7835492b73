import pytest

from autoleveler.machine_state import WorkOffset, parse_status_report, wco_from_mapping


def test_status_with_wco():
    status = parse_status_report("<Idle|MPos:10.000,20.000,-3.000|FS:0,0|WCO:1.000,2.000,-4.000>")
    assert status.state == "Idle"
    assert status.mpos == (10, 20, -3)
    assert status.wco == (1, 2, -4)
    assert status.extra["FS"] == "0,0"


def test_status_derives_wco_from_positions():
    status = parse_status_report("<Run|MPos:10,20,-3|WPos:9,18,1>")
    assert status.wco == pytest.approx((1, 2, -4))


def test_status_without_offsets():
    status = parse_status_report("<Alarm|MPos:0,0,0>")
    assert status.state == "Alarm"
    assert status.wco is None


def test_status_with_bad_axes():
    status = parse_status_report("<Idle|MPos:a,b,c|WCO:1,2>")
    assert status.mpos is None
    assert status.wco is None


@pytest.mark.parametrize(
    "data,expected",
    [
        ({"wco": "1,2,3"}, (1, 2, 3)),
        ({"wco": {"x": 1, "y": 2, "z": 3}}, (1, 2, 3)),
        ({"wco": [1, 2, 3, 4]}, (1, 2, 3)),
        ({"status": {"wco": {"z": -2}}}, (0, 0, -2)),
        ({"state": "Idle"}, None),
    ],
)
def test_wco_from_mapping(data, expected):
    assert wco_from_mapping(data) == expected


def test_work_offset_drift():
    offset = WorkOffset()
    assert not offset.reconcile_z(-10, -4)
    offset.set(1, 2, -5)
    assert offset.reconcile_z(-10, -4)
    assert offset.z == pytest.approx(-6)
    assert not offset.reconcile_z(-10, -4)
    offset.reset()
    assert offset.as_tuple() == (0, 0, 0)
