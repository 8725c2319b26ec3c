"""
Futures contract roll-over calendar for the Crude SMC paper trader.

Monthly crude contracts expire on a fixed date. A few days before expiry
the session should move to the next month's contract; check_switch is
polled by the session timer and reports each roll exactly once.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Set, Tuple


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FuturesContract:
    symbol: str
    expiry: date

    def label(self) -> str:
        return f"{self.symbol} {self.expiry.strftime('%d %b %Y').upper()}"


@dataclass(frozen=True)
class ContractSwitch:
    from_contract: FuturesContract
    to_contract: FuturesContract
    days_to_expiry: int

    def message(self) -> str:
        return (
            f"{self.from_contract.label()} expires in {self.days_to_expiry} day(s); "
            f"switch to {self.to_contract.label()}"
        )


class ContractCalendar:
    def __init__(self, contracts: Iterable[FuturesContract], switch_days_before: int = 3):
        self.contracts: List[FuturesContract] = sorted(contracts, key=lambda c: c.expiry)
        self.switch_days_before = switch_days_before
        self._notified: Set[Tuple[FuturesContract, FuturesContract]] = set()

    def active_contract(self, today: date) -> Optional[FuturesContract]:
        """First contract expiring on or after today."""
        for contract in self.contracts:
            if contract.expiry >= today:
                return contract
        return None

    def next_contract(self, contract: FuturesContract) -> Optional[FuturesContract]:
        for candidate in self.contracts:
            if candidate.expiry > contract.expiry:
                return candidate
        return None

    def check_switch(self, today: date) -> Optional[ContractSwitch]:
        """
        Return a ContractSwitch the first time `today` falls within
        switch_days_before days of the active contract's expiry and a next
        contract exists. Later calls for the same pair return None.
        """
        active = self.active_contract(today)
        if active is None:
            return None

        days_left = (active.expiry - today).days
        if days_left > self.switch_days_before:
            return None

        upcoming = self.next_contract(active)
        if upcoming is None:
            return None

        pair = (active, upcoming)
        if pair in self._notified:
            return None
        self._notified.add(pair)

        switch = ContractSwitch(active, upcoming, days_left)
        logger.info("[contracts] %s", switch.message())
        return switch
