"""
Text formatting for the Crude SMC paper trader.

Console-friendly output for:
- trade signals and analysis explanations
- trade open/close updates
- ledger statistics and replay results
"""

from __future__ import annotations

from typing import Dict, List

from strategy import LONG, AnalysisResult, TradeSignal


def _direction_emoji(direction: str) -> str:
    return "🟢" if direction == LONG else "🔴"


def format_signal(signal: TradeSignal) -> str:
    """
    Format a trade signal with levels, confidence and supporting patterns.
    """
    lines: List[str] = []
    lines.append(f"{_direction_emoji(signal.direction)} {signal.symbol} {signal.direction} "
                 f"@ {signal.entry_price:.2f}")
    lines.append(f"SL: {signal.stop_loss:.2f} ({signal.stop_loss_points:.1f} pts) | "
                 f"TP: {signal.take_profit:.2f} ({signal.take_profit_points:.1f} pts) | "
                 f"RR: 1:{signal.risk_reward_ratio:g}")
    lines.append(f"Confidence: {signal.confidence:.0f}%")
    lines.append(f"Reason: {signal.reason}")

    if signal.patterns_detected:
        patterns = ", ".join(f"{p.type} ({p.confidence:.2f})" for p in signal.patterns_detected)
        lines.append(f"Patterns: {patterns}")

    if signal.timeframe_bias:
        bias = " | ".join(f"{tf}: {trend}" for tf, trend in signal.timeframe_bias.items())
        lines.append(f"Bias: {bias}")

    return "\n".join(lines)


def format_analysis(result: AnalysisResult) -> str:
    if result.signal is not None and result.should_trade:
        return result.explanation + "\n" + format_signal(result.signal)

    lines = [f"No trade: {result.explanation}"]
    for opp in result.opportunities:
        missing = f" (missing: {', '.join(opp.missing_conditions)})" if opp.missing_conditions else ""
        lines.append(f"  {opp.direction}: {opp.score} - {opp.reason}{missing}")
        if opp.liquidity_targets:
            targets = ", ".join(f"{level:.2f}" for level in opp.liquidity_targets)
            lines.append(f"    liquidity: {targets}")
    return "\n".join(lines)


def format_trade_update(trade) -> str:
    """One-line open or close notice for a paper trade."""
    if trade.is_open:
        return (f"📈 NEW {trade.direction} TRADE @ {trade.entry_price:.2f} | "
                f"SL {trade.stop_loss:.2f} | TP {trade.take_profit:.2f} | {trade.position_size} lot(s)")

    emoji = "✅" if (trade.profit_loss_points or 0) > 0 else "❌"
    return (f"{emoji} TRADE CLOSED ({trade.exit_reason}): {trade.entry_price:.2f} -> "
            f"{trade.exit_price:.2f} | {trade.profit_loss_points:+.1f} pts "
            f"({trade.profit_loss_amount:+.0f} INR)")


def _profit_factor(value: float) -> str:
    return "∞" if value == float("inf") else f"{value:.2f}"


def format_statistics(stats: Dict) -> str:
    if not stats.get("total_trades"):
        return "No closed trades yet."

    return "\n".join([
        "📊 Paper Trading Statistics",
        f"Trades: {stats['total_trades']} | Wins: {stats['wins']} | Losses: {stats['losses']}",
        f"Win Rate: {stats['win_rate']:.1f}%",
        f"Total P&L: {stats['total_pnl']:+.1f} pts ({stats.get('total_pnl_amount', 0):+,.0f} INR)",
        f"Avg Win: {stats['avg_win']:+.1f} | Avg Loss: {stats['avg_loss']:+.1f}",
        f"Largest Win: {stats.get('largest_win', 0):+.1f} | Largest Loss: {stats.get('largest_loss', 0):+.1f}",
        f"Profit Factor: {_profit_factor(stats.get('profit_factor', 0))}",
    ])


def format_replay_result(result: Dict) -> str:
    """Summary block for backtest.run_replay output."""
    candles = ", ".join(f"{tf}={n}" for tf, n in result.get("candles", {}).items())
    state = result.get("final_state", {})

    lines = [
        "=" * 60,
        "REPLAY RESULT",
        "=" * 60,
        f"Ticks: {result.get('ticks', 0)} (dropped {result.get('dropped_ticks', 0)})",
        f"Candles: {candles}",
        f"Signals: {len(result.get('signals', []))} | Rejections: {len(result.get('rejections', []))}",
        "",
        format_statistics(result.get("statistics", {})),
    ]

    rejections = result.get("rejections", [])
    if rejections:
        lines.append("")
        lines.append("Last rejections:")
        for reason in rejections[-5:]:
            lines.append(f"  - {reason}")

    if state:
        lines.append("")
        lines.append(f"Daily P&L: {state.get('daily_pnl_points', 0):+.1f} pts | "
                     f"Paused: {state.get('is_paused')} {state.get('pause_reason') or ''}".rstrip())

    return "\n".join(lines)
