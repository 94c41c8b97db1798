#!/usr/bin/env python3
"""
Line Echo Client Example

Connects to the line echo server and demonstrates:
- Connecting with a timeout, optionally from a given local interface
- Writing CRLF-terminated lines
- Reading each reply up to its separator
- Closing the connection

Run the echo server first, then run this client.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import logging
import time

from tcppeer import CRLF, ConnectionConfig, PeerError, PeerSocket, PeerTimeoutError

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def echo_client(host: str = "127.0.0.1", port: int = 8080, message: str = "Hello, TCP!",
                interface: str = None, timeout: float = 30.0):
    """Send one line and check that it comes back unchanged."""
    print(f"Connecting to {host}:{port}...")

    peer = PeerSocket()

    try:
        peer.connect_to_host(host, port, interface=interface, timeout=timeout)
        print(f"Connected {peer.local_host}:{peer.local_port} -> "
              f"{peer.connected_host}:{peer.connected_port}")

        data = message.encode('utf-8') + CRLF
        print(f"Sent {peer.write(data)} bytes")

        response = peer.read_to_data(CRLF)
        print(f"Received {len(response)} bytes: {response[:-2].decode('utf-8')}")

        if response == data:
            print("Echo verified!")
        else:
            print("WARNING: Response doesn't match sent data!")

    except PeerTimeoutError:
        print("Connection timed out")
    except PeerError as e:
        print(f"Error: {e}")
    finally:
        peer.disconnect()
        print("Connection closed")


def benchmark_client(host: str = "127.0.0.1", port: int = 8080,
                     message_size: int = 1024, count: int = 100, ipv6: bool = False):
    """Round-trip `count` lines of `message_size` bytes."""
    print(f"Benchmarking {host}:{port}")
    print(f"Message size: {message_size} bytes, Count: {count}")

    config = ConnectionConfig(ipv4_preferred=not ipv6, timeout=30.0)

    try:
        with PeerSocket(config) as peer:
            peer.connect_to_host(host, port)
            print("Connected, starting benchmark...")

            line = b'X' * (message_size - len(CRLF)) + CRLF

            start_time = time.time()
            for i in range(count):
                peer.write(line)
                peer.read_to_length(len(line))

                if (i + 1) % 10 == 0:
                    print(f"  Completed {i + 1}/{count} iterations")
            elapsed = time.time() - start_time

        print(f"\nResults:")
        print(f"  Total time: {elapsed:.2f} seconds")
        print(f"  Bytes sent: {count * len(line)}")
        print(f"  Throughput: {count * len(line) / elapsed / 1024:.2f} KB/s")
        print(f"  Avg latency: {elapsed / count * 1000:.2f} ms")

    except PeerError as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Line Echo Client")
    parser.add_argument("--host", default="127.0.0.1", help="Server host")
    parser.add_argument("--port", type=int, default=8080, help="Server port")
    parser.add_argument("--message", "-m", default="Hello, TCP!", help="Message to send")
    parser.add_argument("--interface", help="Local interface name or IP, optionally with :port")
    parser.add_argument("--benchmark", "-b", action="store_true", help="Benchmark mode")
    parser.add_argument("--ipv6", action="store_true", help="Prefer IPv6 when both resolve")
    parser.add_argument("--size", type=int, default=1024, help="Message size for benchmark")
    parser.add_argument("--count", type=int, default=100, help="Message count for benchmark")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    if not args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    if args.benchmark:
        benchmark_client(args.host, args.port, args.size, args.count, args.ipv6)
    else:
        echo_client(args.host, args.port, args.message, args.interface)
