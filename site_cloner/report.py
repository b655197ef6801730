# File: site_cloner/report.py
"""site_cloner.report: итоговый отчёт об обходе и его сохранение в JSON."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

__all__ = ["CrawlReport", "render_json"]

CrawlStatus = Literal["completed", "cancelled", "aborted"]


@dataclass(slots=True)
class CrawlReport:
    """Результат обхода: статус, счётчики, посещённые и упавшие URL."""

    status: CrawlStatus = "completed"
    seed: str = ""
    pages_captured: int = 0
    assets_captured: int = 0
    visited: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    retries: Dict[str, int] = field(default_factory=dict)
    duration: float = 0.0
    error: Optional[str] = None
    archive_path: Optional[str] = None

    @property
    def total_retries(self) -> int:
        return sum(self.retries.values())

    def summary_line(self) -> str:
        """Короткая строка статуса для консоли."""
        head = {
            "completed": "Done",
            "cancelled": "Cancelled",
            "aborted": "Aborted",
        }[self.status]
        line = f"{head} - {self.pages_captured} pages, {self.assets_captured} assets"
        if self.failed:
            line += f", {len(self.failed)} failed"
        return line

    def json(self, *, pretty: bool = False) -> str:
        """Возвращает JSON-представление отчёта."""
        return json.dumps(asdict(self), ensure_ascii=False, indent=2 if pretty else None)


def render_json(report: CrawlReport, output_path: Union[Path, str]) -> Path:
    """
    Сохраняет отчёт в формате JSON по указанному пути.

    :param report: объект CrawlReport
    :param output_path: путь к JSON-файлу
    :return: Path сохранённого файла
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report.json(pretty=True), encoding="utf-8")
    return output
