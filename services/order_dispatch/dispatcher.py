"""
Concurrent multi-account order fan-out.

One market order per enabled account, all in flight at once. Each account's
attempt is isolated: a rejection, network error or timeout on one account is
reported in its own result and never prevents the others from completing.
Failed orders are reported, never resubmitted.
"""

import asyncio
import time
from typing import Any, Optional

from core.config.settings import Settings
from core.logging import get_audit_logger_safe, get_error_logger_safe, get_trading_logger_safe
from core.schemas.events import Instrument, OrderSide
from services.accounts.models import AccountHandle
from services.accounts.registry import AccountRegistry
from .models import AccountOrderResult, DispatchResult


class OrderDispatcher:
    def __init__(self, registry: AccountRegistry, settings: Settings):
        self.registry = registry
        self.trading = settings.trading
        self.logger = get_trading_logger_safe("order_dispatcher")
        self.audit_logger = get_audit_logger_safe("order_audit")
        self.error_logger = get_error_logger_safe("order_dispatcher_errors")

    async def buy_all(self, instrument: Instrument) -> DispatchResult:
        return await self.dispatch(instrument, OrderSide.BUY)

    async def sell_all(self, instrument: Instrument) -> DispatchResult:
        return await self.dispatch(instrument, OrderSide.SELL)

    async def dispatch(self, instrument: Instrument, side: OrderSide) -> DispatchResult:
        """Place ``side`` for ``instrument`` on every enabled account; never raises."""
        accounts = self.registry.get_enabled_accounts()
        self.logger.info(f"Live {side.value} on all accounts", symbol=instrument.tradingsymbol,
                         quantity=instrument.lot, accounts=len(accounts))

        if not accounts:
            self.logger.warning("No enabled accounts", side=side.value, symbol=instrument.tradingsymbol)
            return DispatchResult(
                success=False,
                side=side,
                symbol=instrument.tradingsymbol,
                message="No enabled accounts",
            )

        start = time.perf_counter()
        outcomes = await asyncio.gather(
            *(self._place_on_account(account, instrument, side) for account in accounts),
            return_exceptions=True,
        )
        total_ms = (time.perf_counter() - start) * 1000

        results = [
            outcome if isinstance(outcome, AccountOrderResult)
            else self._failure(account, outcome, 0.0)
            for account, outcome in zip(accounts, outcomes)
        ]
        success_count = sum(1 for r in results if r.success)
        fail_count = len(results) - success_count

        for r in results:
            if r.success:
                self.audit_logger.info("Order placed", side=side.value, symbol=instrument.tradingsymbol,
                                       account=r.account, account_id=r.account_id, order_id=r.order_id,
                                       duration_ms=round(r.duration_ms, 1))
            else:
                self.error_logger.error("Order failed", side=side.value, symbol=instrument.tradingsymbol,
                                        account=r.account, account_id=r.account_id, error=r.error)

        message = f"{success_count}/{len(results)} accounts filled in {total_ms:.0f}ms"
        self.logger.info("Dispatch complete", side=side.value, symbol=instrument.tradingsymbol,
                         success_count=success_count, fail_count=fail_count,
                         total_duration_ms=round(total_ms, 1))

        return DispatchResult(
            success=success_count > 0,
            side=side,
            symbol=instrument.tradingsymbol,
            total=len(results),
            success_count=success_count,
            fail_count=fail_count,
            total_duration_ms=total_ms,
            results=results,
            message=message,
        )

    async def _place_on_account(self, account: AccountHandle, instrument: Instrument,
                                side: OrderSide) -> AccountOrderResult:
        start = time.perf_counter()
        timeout = self.trading.order_timeout_seconds
        try:
            call = asyncio.to_thread(
                account.client.place_order,
                variety=self.trading.order_variety,
                exchange=instrument.exchange,
                tradingsymbol=instrument.tradingsymbol,
                transaction_type=side.value,
                quantity=instrument.lot,
                product=self.trading.product,
                order_type=self.trading.order_type,
                validity=self.trading.validity,
            )
            if timeout:
                response = await asyncio.wait_for(call, timeout)
            else:
                response = await call
        except asyncio.TimeoutError:
            return self._failure(account, f"Timed out after {timeout}s", _elapsed_ms(start))
        except Exception as e:
            return self._failure(account, e, _elapsed_ms(start))

        duration_ms = _elapsed_ms(start)
        try:
            await asyncio.to_thread(self.registry.update_last_order, account.id)
        except Exception as e:
            self.error_logger.error("Failed to stamp last order", account_id=account.id, error=str(e))
        return AccountOrderResult(
            account_id=account.id,
            account=account.name,
            success=True,
            order_id=_order_id(response),
            duration_ms=duration_ms,
            message=f"Order placed in {duration_ms:.0f}ms",
        )

    @staticmethod
    def _failure(account: AccountHandle, error: Any, duration_ms: float) -> AccountOrderResult:
        text = str(error) or type(error).__name__
        return AccountOrderResult(
            account_id=account.id,
            account=account.name,
            success=False,
            error=text,
            duration_ms=duration_ms,
            message=f"Failed: {text}",
        )


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _order_id(response: Any) -> Optional[str]:
    # KiteConnect returns the id itself; some clients wrap it
    if isinstance(response, dict):
        response = response.get("order_id")
    return None if response is None else str(response)
