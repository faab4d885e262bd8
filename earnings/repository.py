"""
Repository abstractions for durable earnings aggregates and daily snapshots.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, timezone
from threading import Lock
from typing import Dict, List, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.flux_table import FluxRecord
from influxdb_client.client.write_api import SYNCHRONOUS

from earnings.clock import start_of_day
from earnings.errors import PersistenceFailure
from earnings.influx import InfluxConfig
from earnings.models import DailySnapshot, UserAggregate

logger = logging.getLogger(__name__)


class EarningsRepository(ABC):
    """Interface for persisting and retrieving earnings state."""

    @abstractmethod
    def load(self, user_id: str) -> Optional[UserAggregate]:
        """Return the stored aggregate, ``None`` when absent; raise ``PersistenceFailure`` on outage."""
        raise NotImplementedError

    @abstractmethod
    def save(self, aggregate: UserAggregate) -> None:
        raise NotImplementedError

    @abstractmethod
    def append_snapshot(self, snapshot: DailySnapshot) -> None:
        """Create or overwrite the snapshot for ``(user_id, day_key)``."""
        raise NotImplementedError

    @abstractmethod
    def list_aggregates(self) -> List[UserAggregate]:
        raise NotImplementedError

    @abstractmethod
    def list_snapshots(self, user_id: str, limit: int = 30) -> List[DailySnapshot]:
        """Return up to ``limit`` most recent snapshots in ascending day order."""
        raise NotImplementedError

    def close(self) -> None:
        """Release connections held by the repository."""


class InMemoryEarningsRepository(EarningsRepository):
    """Process-local repository used by tests and single-node demos."""

    def __init__(self) -> None:
        self._aggregates: Dict[str, UserAggregate] = {}
        self._snapshots: Dict[tuple[str, date], DailySnapshot] = {}
        self._lock = Lock()

    def load(self, user_id: str) -> Optional[UserAggregate]:
        with self._lock:
            stored = self._aggregates.get(user_id)
            return replace(stored) if stored is not None else None

    def save(self, aggregate: UserAggregate) -> None:
        with self._lock:
            self._aggregates[aggregate.user_id] = replace(aggregate)

    def append_snapshot(self, snapshot: DailySnapshot) -> None:
        with self._lock:
            self._snapshots[(snapshot.user_id, snapshot.day_key)] = snapshot

    def list_aggregates(self) -> List[UserAggregate]:
        with self._lock:
            return [replace(aggregate) for aggregate in self._aggregates.values()]

    def list_snapshots(self, user_id: str, limit: int = 30) -> List[DailySnapshot]:
        with self._lock:
            series = [snap for (uid, _), snap in self._snapshots.items() if uid == user_id]
        series.sort(key=lambda snap: snap.day_key)
        return series[-limit:] if limit > 0 else []


class InfluxEarningsRepository(EarningsRepository):
    """InfluxDB-backed earnings repository."""

    AGGREGATE_MEASUREMENT = "earnings_aggregates"
    SNAPSHOT_MEASUREMENT = "earnings_daily_snapshots"

    def __init__(self, config: Optional[InfluxConfig] = None) -> None:
        self._config = config or InfluxConfig.from_env()
        if not self._config.token:
            raise ValueError("InfluxDB token is required for InfluxEarningsRepository.")
        self._client = InfluxDBClient(
            url=self._config.url,
            token=self._config.token,
            org=self._config.org,
            timeout=self._config.timeout_ms,
        )
        # Synchronous writes so a failed flush is visible to the caller and retried.
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)
        self._query_api = self._client.query_api()

    # ------------------------------------------------------------------ mutations
    def save(self, aggregate: UserAggregate) -> None:
        point = (
            Point(self.AGGREGATE_MEASUREMENT)
            .tag("user_id", aggregate.user_id)
            .field("day_profit", float(aggregate.day_profit))
            .field("month_profit", float(aggregate.month_profit))
            .field("lifetime_profit", float(aggregate.lifetime_profit))
            .field("day_baseline_value", float(aggregate.day_baseline_value))
            .field("month_baseline_value", float(aggregate.month_baseline_value))
            .field("initial_endowment", float(aggregate.initial_endowment))
            .field("current_portfolio_value", float(aggregate.current_portfolio_value))
            .field("previous_portfolio_value", float(aggregate.previous_portfolio_value))
            .field("trades_today", int(aggregate.trades_today))
            .field("total_trades", int(aggregate.total_trades))
            .time(_to_time_ns(aggregate.updated_at), WritePrecision.NS)
        )
        if aggregate.display_name:
            point = point.field("display_name", aggregate.display_name)
        if aggregate.last_day_key is not None:
            point = point.field("last_day_key", aggregate.last_day_key.isoformat())
        if aggregate.last_month_key is not None:
            point = point.field("last_month_key", aggregate.last_month_key.isoformat())
        self._write(point)

    def append_snapshot(self, snapshot: DailySnapshot) -> None:
        """Stamp at IST midnight so repeated writes for the same day overwrite one point."""
        point = (
            Point(self.SNAPSHOT_MEASUREMENT)
            .tag("user_id", snapshot.user_id)
            .field("day_key", snapshot.day_key.isoformat())
            .field("portfolio_value", float(snapshot.portfolio_value))
            .field("profit_delta", float(snapshot.profit_delta))
            .field("trade_count", int(snapshot.trade_count))
            .time(_to_time_ns(start_of_day(snapshot.day_key)), WritePrecision.NS)
        )
        self._write(point)

    # ------------------------------------------------------------------ queries
    def load(self, user_id: str) -> Optional[UserAggregate]:
        query = f"""
from(bucket: "{self._config.bucket}")
  |> range(start: 0)
  |> filter(fn: (r) => r["_measurement"] == "{self.AGGREGATE_MEASUREMENT}")
  |> filter(fn: (r) => r["user_id"] == "{_flux_string(user_id)}")
  |> group(columns: ["user_id", "_field"])
  |> last()
"""
        aggregates = _merge_aggregate_records(self._query(query))
        return aggregates[0] if aggregates else None

    def list_aggregates(self) -> List[UserAggregate]:
        query = f"""
from(bucket: "{self._config.bucket}")
  |> range(start: 0)
  |> filter(fn: (r) => r["_measurement"] == "{self.AGGREGATE_MEASUREMENT}")
  |> group(columns: ["user_id", "_field"])
  |> last()
"""
        return _merge_aggregate_records(self._query(query))

    def list_snapshots(self, user_id: str, limit: int = 30) -> List[DailySnapshot]:
        if limit <= 0:
            return []
        query = f"""
from(bucket: "{self._config.bucket}")
  |> range(start: 0)
  |> filter(fn: (r) => r["_measurement"] == "{self.SNAPSHOT_MEASUREMENT}")
  |> filter(fn: (r) => r["user_id"] == "{_flux_string(user_id)}")
  |> group(columns: ["user_id"])
  |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
  |> sort(columns: ["_time"], desc: true)
  |> limit(n: {int(limit)})
"""
        records = self._safe_query(query)
        snapshots = [_record_to_snapshot(record) for record in records]
        snapshots.sort(key=lambda snap: snap.day_key)
        return snapshots

    # ------------------------------------------------------------------ helpers
    def _write(self, point: Point) -> None:
        try:
            self._write_api.write(bucket=self._config.bucket, org=self._config.org, record=point)
        except Exception as exc:
            raise PersistenceFailure(f"InfluxDB write failed: {exc}") from exc

    def _query(self, flux_query: str) -> List[FluxRecord]:
        try:
            tables = self._query_api.query(org=self._config.org, query=flux_query)
        except Exception as exc:
            raise PersistenceFailure(f"InfluxDB query failed: {exc}") from exc
        records: List[FluxRecord] = []
        for table in tables:
            for record in table.records:
                records.append(record)
        return records

    def _safe_query(self, flux_query: str) -> List[FluxRecord]:
        try:
            return self._query(flux_query)
        except PersistenceFailure as exc:  # pragma: no cover - network path
            logger.warning("Failed to query InfluxDB: %s", exc, exc_info=True)
            return []

    def close(self) -> None:
        self._write_api.close()
        self._client.close()


def _merge_aggregate_records(records: List[FluxRecord]) -> List[UserAggregate]:
    grouped: dict[str, dict] = {}
    times: dict[str, datetime] = {}
    for rec in records:
        vals = rec.values
        uid = str(vals.get("user_id"))
        grouped.setdefault(uid, {})
        grouped[uid][str(vals.get("_field"))] = rec.get_value()
        stamp = rec.get_time()
        if stamp is not None and (uid not in times or stamp > times[uid]):
            times[uid] = stamp
    out: List[UserAggregate] = []
    for uid, data in grouped.items():
        out.append(
            UserAggregate(
                user_id=uid,
                display_name=_optional_str(data.get("display_name")),
                day_profit=_float(data.get("day_profit")),
                month_profit=_float(data.get("month_profit")),
                lifetime_profit=_float(data.get("lifetime_profit")),
                last_day_key=_optional_date(data.get("last_day_key")),
                last_month_key=_optional_date(data.get("last_month_key")),
                day_baseline_value=_float(data.get("day_baseline_value")),
                month_baseline_value=_float(data.get("month_baseline_value")),
                initial_endowment=_float(data.get("initial_endowment")),
                current_portfolio_value=_float(data.get("current_portfolio_value")),
                previous_portfolio_value=_float(data.get("previous_portfolio_value")),
                trades_today=int(_float(data.get("trades_today"))),
                total_trades=int(_float(data.get("total_trades"))),
                updated_at=times.get(uid) or datetime.now(tz=timezone.utc),
            )
        )
    return out


def _record_to_snapshot(record: FluxRecord) -> DailySnapshot:
    values = record.values
    key = _optional_date(values.get("day_key"))
    if key is None:
        key = record.get_time().date()
    return DailySnapshot(
        user_id=str(values.get("user_id")),
        day_key=key,
        portfolio_value=_float(values.get("portfolio_value")),
        profit_delta=_float(values.get("profit_delta")),
        trade_count=int(_float(values.get("trade_count"))),
    )


def _flux_string(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


def _float(value: object) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_date(value: object) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def _to_time_ns(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1_000_000_000)
