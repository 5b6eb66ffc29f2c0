import argparse
import signal
import threading
from typing import List, Optional

from .address import parse_multicast_address, resolve_interface
from .client import ProbeClient
from .config import ProbeConfig
from .endpoint import Endpoint
from .errors import ErrorCode, ProbeError
from .logger import LogLevel, logger_from_env
from .server import ProbeServer, ReplyFormat

def build_parser() -> argparse.ArgumentParser:
    d = ProbeConfig()
    p = argparse.ArgumentParser(
        prog="mcast-ping",
        description="Probe IPv6 multicast reachability. Servers join a group and ACK every probe; "
                    "clients send periodic probes and report the reply rate per peer.")
    p.add_argument("-s", "--server", action="store_true",
                   help="Run in server mode (listen on multicast and reply to senders)")
    p.add_argument("-a", "--maddr", dest="address",
                   help=f"Multicast IPv6 address to use (default: {d.address})")
    p.add_argument("-p", "--port", type=int, help=f"Port to use for multicast/unicast replies (default: {d.port})")
    p.add_argument("-n", "--interval-ms", type=int,
                   help=f"Interval between multicast requests in ms, client mode (default: {d.interval_ms})")
    p.add_argument("-t", "--timeout-ms", type=int,
                   help=f"Receive wait for replies in ms, client mode (default: {d.timeout_ms})")
    p.add_argument("-I", "--ifname", dest="interface",
                   help="Interface name or index for joining/sending multicast (default: system choice)")
    p.add_argument("-c", "--count", type=int, help="Stop after sending this many probes (client mode)")
    p.add_argument("--report-interval", dest="report_interval_s", type=float,
                   help=f"Seconds between statistics lines (default: {d.report_interval_s:g})")
    p.add_argument("--reply-format", choices=[f.value for f in ReplyFormat],
                   help=f"Reply payload sent by the server (default: {d.reply_format})")
    p.add_argument("--hops", type=int, help="Multicast hop limit for outgoing probes")
    p.add_argument("--no-loopback", dest="loopback", action="store_const", const=False,
                   help="Disable IPV6_MULTICAST_LOOP on the server socket")
    p.add_argument("--no-per-peer", dest="per_peer", action="store_const", const=False,
                   help="Only print totals, not the per-peer breakdown")
    p.add_argument("--config", help="JSON file with any of the options above")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return p

def load_config(args: argparse.Namespace) -> ProbeConfig:
    base = ProbeConfig.load(args.config) if args.config else ProbeConfig()
    return base.merged(vars(args))

def _install_stop_handler(stop):
    if threading.current_thread() is not threading.main_thread(): return
    signal.signal(signal.SIGTERM, lambda signum, frame: stop())

def run_server(cfg: ProbeConfig, logger) -> int:
    group = parse_multicast_address(cfg.address, logger)
    iface = resolve_interface(cfg.interface)
    print(f"Starting server: joining multicast {group} on port {cfg.port} (if_index={iface.index})")
    with Endpoint.bind_server(cfg.port, group, iface, loopback=cfg.loopback, logger=logger) as ep:
        server = ProbeServer(ep, ReplyFormat(cfg.reply_format), workers=cfg.reply_workers,
                             queue_size=cfg.reply_queue, logger=logger)
        _install_stop_handler(server.stop)
        try:
            server.run()
        except KeyboardInterrupt:
            server.stop()
        s = server.stats()
        print(f"Server stopped: received={s['received']} replied={s['replied']} failed={s['failed']}")
    return ErrorCode.OK

def run_client(cfg: ProbeConfig, logger) -> int:
    group = parse_multicast_address(cfg.address, logger)
    iface = resolve_interface(cfg.interface)
    with Endpoint.bind_client(iface, hops=cfg.hops, logger=logger) as ep:
        client = ProbeClient(ep, group, cfg.port, interval_ms=cfg.interval_ms, timeout_ms=cfg.timeout_ms,
                             report_interval=cfg.report_interval_s, iface=iface, count=cfg.count,
                             per_peer=cfg.per_peer, logger=logger)
        _install_stop_handler(client.stop)
        client.run()
    return ErrorCode.OK

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = logger_from_env(override=LogLevel.DEBUG if args.verbose else None)
    try:
        cfg = load_config(args)
        if args.server:
            return int(run_server(cfg, logger))
        return int(run_client(cfg, logger))
    except ProbeError as e:
        logger.log(LogLevel.ERROR, "CLI", str(e))
        return int(e.code)
