import asyncio
import socket
from typing import Optional, Set


class PortAllocator:
    """Hands out MCP listener ports to agents from a fixed range"""

    def __init__(self, start_port: int, end_port: int, host: str = "127.0.0.1"):
        if start_port > end_port:
            raise ValueError(f"Invalid port range: {start_port}-{end_port}")
        self.start_port = start_port
        self.end_port = end_port
        self.host = host
        self.allocated_ports: Set[int] = set()
        self._lock = asyncio.Lock()

    async def allocate(self) -> Optional[int]:
        """Allocate next available port that is also free on the host"""
        async with self._lock:
            for port in range(self.start_port, self.end_port + 1):
                if port in self.allocated_ports:
                    continue
                if not is_port_free(port, self.host):
                    continue
                self.allocated_ports.add(port)
                return port
            return None

    async def release(self, port: int) -> None:
        """Release a port back to the pool"""
        async with self._lock:
            self.allocated_ports.discard(port)

    def is_allocated(self, port: int) -> bool:
        """Check if port is allocated"""
        return port in self.allocated_ports


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Check whether a TCP port can currently be bound"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True
