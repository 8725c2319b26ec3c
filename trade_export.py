"""
Trade Export Module for the Crude SMC paper trader.

- TradeJournal: append-only JSON history of closed trades
- export_trades_to_csv: ledger as CSV for analysis and verification
- generate_trade_summary: short text summary of a ledger

Trades may be paper_trader.Trade objects or their to_dict() form.
"""

import csv
import io
import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from config import JOURNAL_PATH


logger = logging.getLogger(__name__)


def _as_dict(trade) -> Dict:
    return trade.to_dict() if hasattr(trade, "to_dict") else dict(trade)


class TradeJournal:
    def __init__(self, path: str = JOURNAL_PATH):
        self.path = path
        self._ensure_file()

    def _ensure_file(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.path):
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump([], f)

    def log_trade(self, trade, context: Optional[Dict] = None) -> None:
        """Append a closed trade with its context and a logged_at timestamp."""
        entry = _as_dict(trade)
        entry["context"] = dict(context or {})
        entry["context"]["logged_at"] = datetime.now(timezone.utc).isoformat()

        history = self.get_history()
        history.append(entry)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(history, f, indent=2, default=str)
        logger.info("[trade_export] trade %s logged to %s", entry.get("id"), self.path)

    def get_history(self) -> List[Dict]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                history = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.error("[trade_export] could not read %s: %s", self.path, e)
            return []
        return history if isinstance(history, list) else []


def export_trades_to_csv(trades: Sequence, path: Optional[str] = None) -> str:
    """
    Export closed trades to CSV.

    Args:
        trades: Trades (objects or dicts)
        path: Optional file to write as well

    Returns:
        CSV string content
    """
    output = io.StringIO()
    writer = csv.writer(output)

    headers = [
        "Trade ID",
        "Symbol",
        "Direction",
        "Entry Time",
        "Entry Price",
        "Stop Loss",
        "Take Profit",
        "Size (lots)",
        "Exit Time",
        "Exit Price",
        "Exit Reason",
        "Status",
        "P/L (pts)",
        "P/L (INR)",
    ]
    writer.writerow(headers)

    for trade in trades:
        t = _as_dict(trade)
        exit_price = t.get("exit_price")
        writer.writerow([
            t.get("id", ""),
            t.get("symbol", ""),
            t.get("direction", ""),
            t.get("entry_time") or "",
            f"{t.get('entry_price', 0):.2f}",
            f"{t.get('stop_loss', 0):.2f}",
            f"{t.get('take_profit', 0):.2f}",
            t.get("position_size", 0),
            t.get("exit_time") or "",
            f"{exit_price:.2f}" if exit_price is not None else "",
            t.get("exit_reason") or "",
            t.get("status", ""),
            f"{t.get('profit_loss_points') or 0:+.2f}",
            f"{t.get('profit_loss_amount') or 0:+.0f}",
        ])

    content = output.getvalue()
    if path:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        logger.info("[trade_export] %d trades exported to %s", len(trades), path)
    return content


def generate_trade_summary(trades: Sequence) -> str:
    """
    Generate a text summary of trades.

    Returns:
        Summary text
    """
    if not trades:
        return "No trades in period."

    rows = [_as_dict(t) for t in trades]
    total = len(rows)
    points = [r.get("profit_loss_points") or 0 for r in rows]
    wins = sum(1 for p in points if p > 0)
    losses = sum(1 for p in points if p < 0)
    breakeven = total - wins - losses

    total_points = sum(points)
    total_amount = sum(r.get("profit_loss_amount") or 0 for r in rows)
    win_rate = wins / total * 100

    lines = [
        "Trade Summary",
        f"Total Trades: {total}",
        f"Wins: {wins} | Losses: {losses} | B/E: {breakeven}",
        f"Win Rate: {win_rate:.1f}%",
        f"Total Points: {total_points:+.1f}",
        f"Avg Points per Trade: {total_points / total:+.2f}",
        f"Total P/L: INR {total_amount:+,.0f}",
    ]
    return "\n".join(lines)
