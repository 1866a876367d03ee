"""
Ephemeral emulator provisioning

Starts a storage emulator container with the docker CLI, publishes its S3
port on a random host port and tears it down again. Use provision() so the
container is removed on every exit path.
"""

import contextlib
import http.client
import json
import logging
import shutil
import subprocess
import time
import urllib.request
from typing import Dict, Iterator, List, Optional

from s3repro.errors import ProvisioningError

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "localstack/localstack:latest"
DEFAULT_PORT = 4566
HEALTH_PATH = "/_localstack/health"
CONTAINER_LABEL = "s3repro"


def docker_available(docker: str = "docker") -> bool:
    """Check whether the docker CLI is on PATH"""
    return shutil.which(docker) is not None


class EmulatorContainer:
    """
    A single emulator container

    The container is started detached with internal_port published on a
    random host port. stop() is idempotent and safe to call when start()
    failed.
    """

    def __init__(
        self,
        image: str = DEFAULT_IMAGE,
        internal_port: int = DEFAULT_PORT,
        host: str = "localhost",
        env: Optional[Dict[str, str]] = None,
        health_path: str = HEALTH_PATH,
        docker: str = "docker",
        command_timeout: int = 120,
    ):
        self.image = image
        self.internal_port = internal_port
        self.host = host
        self.env = {"SERVICES": "s3"} if env is None else env
        self.health_path = health_path
        self.docker = docker
        self.command_timeout = command_timeout
        self.container_id: Optional[str] = None
        self._port_cache: Dict[int, int] = {}

    def _run(self, args: List[str], timeout: Optional[int] = None) -> str:
        command = [self.docker] + args
        logger.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout or self.command_timeout,
            )
        except FileNotFoundError as e:
            raise ProvisioningError(f"{self.docker} executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(f"Timeout running {' '.join(command)}") from e

        if result.returncode != 0:
            raise ProvisioningError(
                f"{' '.join(command[:2])} failed ({result.returncode}): {result.stderr.strip()}"
            )
        return result.stdout.strip()

    def start(self) -> "EmulatorContainer":
        """Start the container and return self"""
        if self.container_id is not None:
            return self

        args = ["run", "-d", "--label", CONTAINER_LABEL, "-p", str(self.internal_port)]
        for name, value in sorted(self.env.items()):
            args += ["-e", f"{name}={value}"]
        args.append(self.image)

        logger.info("Starting emulator container from %s", self.image)
        output = self._run(args, timeout=max(self.command_timeout, 600))
        if not output:
            raise ProvisioningError(f"docker run returned no container id for {self.image}")
        # docker prints pull progress to stderr, the id is the last stdout line
        self.container_id = output.splitlines()[-1].strip()
        logger.info("Started container %s", self.container_id[:12])
        return self

    def get_mapped_port(self, internal_port: Optional[int] = None) -> int:
        """Return the host port published for internal_port"""
        if self.container_id is None:
            raise ProvisioningError("container is not running")

        internal_port = internal_port or self.internal_port
        if internal_port in self._port_cache:
            return self._port_cache[internal_port]

        output = self._run(["port", self.container_id, f"{internal_port}/tcp"])
        port = parse_port_output(output)
        if port is None:
            raise ProvisioningError(
                f"no host port mapped for {internal_port}/tcp: {output!r}"
            )
        self._port_cache[internal_port] = port
        return port

    @property
    def endpoint_url(self) -> str:
        return f"http://{self.host}:{self.get_mapped_port()}"

    def wait_until_ready(self, timeout: float = 120, interval: float = 2) -> None:
        """Poll the emulator health endpoint until S3 is available"""
        health_url = f"{self.endpoint_url}{self.health_path}"
        logger.info("Waiting for %s to be ready...", health_url)

        deadline = time.time() + timeout
        while time.time() < deadline:
            try:
                req = urllib.request.Request(health_url, method="GET")
                with urllib.request.urlopen(req, timeout=5) as response:
                    if response.status == 200 and s3_is_healthy(response.read()):
                        logger.info("Emulator is ready at %s", self.endpoint_url)
                        return
            except (OSError, http.client.HTTPException) as e:
                logger.debug("Emulator not ready yet: %s", e)
            time.sleep(interval)

        raise ProvisioningError(f"{self.image} failed to become ready within {timeout}s")

    def stop(self) -> None:
        """Remove the container; does nothing if it is not running"""
        if self.container_id is None:
            return

        container_id = self.container_id
        self.container_id = None
        self._port_cache.clear()
        logger.info("Removing container %s", container_id[:12])
        try:
            self._run(["rm", "-f", "-v", container_id], timeout=60)
        except ProvisioningError as e:
            logger.warning("Failed to remove container %s: %s", container_id[:12], e)


def parse_port_output(output: str) -> Optional[int]:
    """
    Parse `docker port` output

    Output is one binding per line, e.g. "0.0.0.0:49153" and "[::]:49153".
    """
    for line in output.splitlines():
        line = line.strip()
        if not line or ":" not in line:
            continue
        try:
            return int(line.rsplit(":", 1)[1])
        except ValueError:
            continue
    return None


def s3_is_healthy(body: bytes) -> bool:
    """
    Check a health response body

    LocalStack reports per-service status; S3 must be "available" or
    "running". Bodies that are not LocalStack health documents count as
    healthy once the endpoint answers 200.
    """
    try:
        document = json.loads(body or b"{}")
    except ValueError:
        return True
    if not isinstance(document, dict):
        return True
    services = document.get("services")
    if not isinstance(services, dict) or "s3" not in services:
        return True
    return services["s3"] in ("available", "running")


@contextlib.contextmanager
def provision(
    image: str = DEFAULT_IMAGE,
    internal_port: int = DEFAULT_PORT,
    startup_timeout: float = 120,
    keep: bool = False,
    **kwargs,
) -> Iterator[EmulatorContainer]:
    """
    Run an emulator for the duration of a with block

    The container is removed on every exit path unless keep is set.
    """
    container = EmulatorContainer(image=image, internal_port=internal_port, **kwargs)
    try:
        container.start()
        container.wait_until_ready(timeout=startup_timeout)
        yield container
    finally:
        if keep and container.container_id:
            logger.info("Keeping container %s", container.container_id[:12])
        else:
            container.stop()
