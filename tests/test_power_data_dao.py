from datetime import datetime

import pytest

from dao.power_data_dao import PowerDataDao
from meter.errors import PersistenceError
from mydataclass.power_data import PowerRecord


class FakeCursor:
    def __init__(self, conn, dictionary=False):
        self.conn = conn
        self.dictionary = dictionary
        self.lastrowid = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        self.lastrowid = len(self.conn.executed)

    def fetchall(self):
        return list(self.conn.rows)


class FakeConnection:
    """只记录 SQL，不连真实数据库"""

    def __init__(self, rows=()):
        self.rows = rows
        self.executed = []
        self.commits = 0
        self.closed = 0

    def cursor(self, dictionary=False):
        return FakeCursor(self, dictionary)

    def commit(self):
        self.commits += 1

    def close(self):
        self.closed += 1


@pytest.fixture
def dao(monkeypatch):
    # 单例重置 + 跳过真实连接池
    monkeypatch.setattr(PowerDataDao, "_instance", None)
    monkeypatch.setattr(PowerDataDao, "_initialize_connection_pool", lambda self: None)
    return PowerDataDao(host="localhost", port=3306, user="root", password="root", database="meter_test")


def test_ensure_table(dao, monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(dao, "get_connection", lambda: conn)
    dao.ensure_table()
    sql, _ = conn.executed[0]
    assert sql.startswith("CREATE TABLE IF NOT EXISTS power_data")
    assert conn.commits == 1
    assert conn.closed == 1


def test_insert_power_data(dao, monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(dao, "get_connection", lambda: conn)
    ts = datetime(2024, 1, 1, 8, 0, 0)
    rec = PowerRecord.from_dict({
        "timestamp": ts,
        "voltage": {"R": 230, "Y": 229, "B": 231},
        "powerFactor": 0.95,
    })
    assert dao.insert_power_data(rec) == 1
    sql, params = conn.executed[0]
    assert sql.startswith("INSERT INTO power_data (timestamp, voltage_r")
    assert params == (ts, 230.0, 229.0, 231.0, 0.0, 0.0, 0.0, 0.95, 0.0, 0.0)
    assert conn.commits == 1


def test_latest(dao, monkeypatch):
    ts = datetime(2024, 1, 1, 8, 0, 0)
    row = {
        "timestamp": ts,
        "voltage_r": 230.0, "voltage_y": 229.0, "voltage_b": 231.0,
        "current_r": 10.0, "current_y": 11.0, "current_b": 12.0,
        "power_factor": 0.9, "thd": 3.0, "active_power": 1500.0,
    }
    conn = FakeConnection(rows=[row])
    monkeypatch.setattr(dao, "get_connection", lambda: conn)
    records = dao.latest(5)
    assert conn.executed[0][1] == (5,)
    assert "ORDER BY timestamp DESC" in conn.executed[0][0]
    assert records[0].current == {"R": 10.0, "Y": 11.0, "B": 12.0}
    assert records[0].active_power == 1500.0


def test_no_connection_raises(dao, monkeypatch):
    monkeypatch.setattr(dao, "get_connection", lambda: None)
    with pytest.raises(PersistenceError):
        dao.insert_power_data(PowerRecord.from_dict({}))


def test_close_connection_safe(dao):
    """关闭空连接不报错"""
    dao.close_connection(None)
