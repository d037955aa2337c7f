from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import pytest

from callsheet_reconciler.config import PipelineConfig
from callsheet_reconciler.factory import StoreBundle, build_orchestrator, build_stores
from callsheet_reconciler.models import RawRow, SheetData
from callsheet_reconciler.orchestrator import UploadOrchestrator

V3_HEADERS = ["Name of the Company", "Contact Number", "Industry", "Address", "Area", "Emirate"]


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def v3_row(company: str, phone: str, industry: str = "Trading", address: str = "Street 1", area: str = "Deira", emirate: str = "Dubai") -> List[str]:
    return [company, phone, industry, address, area, emirate]


def build_sheet(rows: Sequence[Sequence[str]], headers: Optional[Sequence[str]] = None, file_name: str = "calls.xlsx") -> SheetData:
    return SheetData(
        headers=list(headers or V3_HEADERS),
        rows=[RawRow(row_number=index + 2, cells=list(cells)) for index, cells in enumerate(rows)],
        file_name=file_name,
        file_size=1024,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def stores() -> StoreBundle:
    return build_stores({"stores": {"agents": {"options": {"agents": {"agent-a": "Alice", "agent-b": "Bob"}}}}})


@pytest.fixture()
def orchestrator(stores: StoreBundle, clock: FakeClock) -> UploadOrchestrator:
    return build_orchestrator(stores, PipelineConfig(), clock=clock)


@pytest.fixture()
def make_sheet() -> Callable[..., SheetData]:
    return build_sheet


@pytest.fixture()
def row() -> Callable[..., List[str]]:
    return v3_row
