import argparse
import asyncio
from tradesim.utils.config import load_config
from tradesim.utils.logger import setup_logger
from tradesim.utils.trade_log import TransactionLogger
from tradesim.bootstrap import build_services


def parse_deposit(value: str):
    currency, _, amount = value.partition(":")
    if not currency or not amount:
        raise argparse.ArgumentTypeError("deposit must look like CUR:AMOUNT")
    return currency.upper(), float(amount)


async def run_session(cfg, args, logger):
    journal = None
    if cfg.logging.journal:
        journal = TransactionLogger(
            transactions_path=cfg.logging.transactions_csv_path,
            equity_path=cfg.logging.equity_csv_path,
        )
    svc = build_services(cfg, journal=journal)
    logger.info(f"Starting balances: {svc.engine.get_balance()}")

    for currency, amount in args.deposit or []:
        tx = await svc.wallet.deposit(currency, amount)
        logger.info(f"Deposited: {tx}")

    if args.pair:
        order = svc.engine.place_order(
            args.pair, args.side, args.amount, order_type=args.type, limit_price=args.limit_price
        )
        logger.info(f"Placed: {order}")
        await svc.engine.wait_for_settlement()
        order = svc.engine.get_order(order.id)
        logger.info(f"Settled: status={order.status.value} execution={order.execution} error={order.error}")

    # resting limit orders get another look against the latest price
    for order in await svc.engine.check_open_orders():
        logger.info(f"Open order {order.id} -> {order.status.value}")

    summary = await svc.engine.get_portfolio_summary()
    for pos in await svc.engine.get_positions():
        logger.info(f"Position {pos.currency}: amount={pos.amount} avg={pos.avg_price} pnl={pos.unrealized_pnl:.2f}")
    logger.info(
        f"Portfolio: value={summary['total_value']:.2f} pnl={summary['total_pnl']:.2f} "
        f"({summary['total_pnl_percent']:.2f}%)"
    )
    if journal is not None:
        journal.log_equity(summary)
    return summary


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default=None)
    parser.add_argument("--pair", default=None, help="e.g. BTC/USDT")
    parser.add_argument("--side", default="buy", choices=["buy", "sell"])
    parser.add_argument("--amount", type=float, default=0.0)
    parser.add_argument("--type", default="market", choices=["market", "limit"])
    parser.add_argument("--limit-price", type=float, default=None)
    parser.add_argument("--deposit", type=parse_deposit, action="append", help="CUR:AMOUNT, repeatable")
    args = parser.parse_args()

    cfg = load_config(args.config)
    logger = setup_logger(cfg.logging.log_dir)
    logger.info(f"Loaded config: {cfg}")
    try:
        asyncio.run(run_session(cfg, args, logger))
    except KeyboardInterrupt:
        logger.info("Stopped.")


if __name__ == "__main__":
    main()
