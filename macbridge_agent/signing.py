"""
Code-signing material handling.

Locates the signing bundle shipped inside a project and imports it into the
machine's keychain and provisioning-profile directory. Both are agent-global
state, so every import happens inside SigningStore.session(), which holds an
exclusive lock for the whole import-and-build sequence.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple

from macbridge_agent.errors import SigningError, ToolchainError
from macbridge_agent.toolchain import ToolchainInvoker


logger = logging.getLogger("macbridge.agent.signing")

CERTIFICATE_FILENAME = "signing.p12"
PROFILE_FILENAME = "profile.mobileprovision"
PASSWORD_FILENAME = "password.txt"
CODESIGN_PATH = "/usr/bin/codesign"


@dataclass(frozen=True)
class SigningBundle:
    """Certificate, provisioning profile and passphrase file of a project."""
    certificate: Path
    profile: Path
    password_file: Path

    @classmethod
    def locate(cls, project_root: Path) -> Tuple[Optional["SigningBundle"], List[str]]:
        """
        Look for the signing files at the project root.

        Returns:
            (bundle, missing) where bundle is None unless all three files exist
            and missing lists the absent filenames
        """
        project_root = Path(project_root)
        paths = {
            CERTIFICATE_FILENAME: project_root / CERTIFICATE_FILENAME,
            PROFILE_FILENAME: project_root / PROFILE_FILENAME,
            PASSWORD_FILENAME: project_root / PASSWORD_FILENAME,
        }
        missing = [name for name, path in paths.items() if not path.is_file()]
        if missing:
            return None, missing

        return cls(
            certificate=paths[CERTIFICATE_FILENAME],
            profile=paths[PROFILE_FILENAME],
            password_file=paths[PASSWORD_FILENAME],
        ), []


class SigningStore:
    """
    The machine's keychain and provisioning-profile directory.

    Attributes:
        keychain_path: Keychain receiving the certificate
        profiles_dir: Directory receiving provisioning profiles
    """

    def __init__(
        self,
        invoker: ToolchainInvoker,
        keychain_path: Path,
        profiles_dir: Path,
        security_path: str = "security",
    ):
        self._invoker = invoker
        self.keychain_path = Path(keychain_path).expanduser()
        self.profiles_dir = Path(profiles_dir).expanduser()
        self._security_path = security_path
        self._lock = asyncio.Lock()

    @property
    def in_use(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def session(
        self,
        bundle: SigningBundle,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> AsyncIterator[None]:
        """
        Hold the signing store exclusively and import the bundle.

        The lock is kept until the block exits so no other job can replace
        the identity while a signed build is running.

        Raises:
            SigningError: If the certificate or profile import fails
        """
        log = log or logger
        async with self._lock:
            await self.import_bundle(bundle, log)
            yield

    async def import_bundle(self, bundle: SigningBundle, log: logging.LoggerAdapter) -> None:
        """Import the certificate and install the provisioning profile."""
        try:
            password = bundle.password_file.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise SigningError(f"Cannot read {bundle.password_file.name}: {e}")

        log.info("Importing certificate...")
        try:
            await self._invoker.run(
                [
                    self._security_path,
                    "import",
                    str(bundle.certificate),
                    "-k",
                    str(self.keychain_path),
                    "-P",
                    password,
                    "-T",
                    CODESIGN_PATH,
                ],
                bundle.certificate.parent,
                log=log,
                secrets=[password],
            )
        except ToolchainError as e:
            raise SigningError(f"Certificate import failed: {_redact(e, password)}") from e
        finally:
            del password

        log.info("Copying provisioning profile...")
        try:
            self.profiles_dir.mkdir(parents=True, exist_ok=True)
            await self._invoker.run(
                ["cp", str(bundle.profile), str(self.profiles_dir)],
                bundle.profile.parent,
                log=log,
            )
        except (OSError, ToolchainError) as e:
            raise SigningError(f"Provisioning profile install failed: {e}") from e


def _redact(error: ToolchainError, secret: str) -> str:
    message = error.stderr.strip() or str(error)
    return message.replace(secret, "****") if secret else message
