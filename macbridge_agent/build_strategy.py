"""
Build strategy selection.

Chooses between the unsigned simulator build and the signed release build for
a job and runs it:

1. simulator requested -> unsigned build
2. release requested but a signing file is missing -> unsigned build
   (a downgrade, logged as a fallback notice)
3. release with a complete signing bundle -> import the bundle, then the
   signed build. A failed import fails the job; there is no unsigned fallback
   once signing was attempted.

In every case the build product must exist at its conventional path even when
the toolchain reported success.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from macbridge_agent.errors import ArtifactMissingError
from macbridge_agent.models import BuildMode
from macbridge_agent.signing import SigningBundle, SigningStore
from macbridge_agent.toolchain import ToolchainInvoker


logger = logging.getLogger("macbridge.agent.build")

SIMULATOR_PRODUCT = Path("build/ios/iphonesimulator/Runner.app")
RELEASE_PRODUCT = Path("build/ios/iphoneos/Runner.app")


@dataclass(frozen=True)
class BuildPlan:
    """Decision for one job."""
    signed: bool
    reason: str
    bundle: Optional[SigningBundle] = None
    missing: tuple = ()

    @property
    def downgraded(self) -> bool:
        return bool(self.missing)


@dataclass
class BuildOutcome:
    """Successful build of a job."""
    artifact_path: Path
    signed: bool
    downgraded: bool = False


def plan_build(
    mode: BuildMode,
    bundle: Optional[SigningBundle],
    missing: Optional[List[str]] = None,
) -> BuildPlan:
    """
    Decide which build variant to run.

    Args:
        mode: Requested build mode
        bundle: Signing bundle, or None if incomplete
        missing: Names of the absent signing files

    Returns:
        BuildPlan describing the chosen variant
    """
    if mode == BuildMode.SIMULATOR:
        return BuildPlan(signed=False, reason="simulator build requested")

    if bundle is None:
        return BuildPlan(
            signed=False,
            reason="code signing files not found",
            missing=tuple(missing or ()),
        )

    return BuildPlan(signed=True, reason="release build with signing bundle", bundle=bundle)


class BuildStrategySelector:
    """
    Runs the build variant chosen by plan_build().

    Attributes:
        invoker: Toolchain invoker for the build commands
        signing_store: Keychain/profile store used by signed builds
    """

    def __init__(self, invoker: ToolchainInvoker, signing_store: SigningStore):
        self.invoker = invoker
        self.signing_store = signing_store

    async def build(
        self,
        mode: BuildMode,
        project_root: Path,
        output_path: Path,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> BuildOutcome:
        """
        Build the project and copy the product to output_path.

        Raises:
            SigningError: If importing the signing bundle fails
            ToolchainError: If the build command fails or times out
            ArtifactMissingError: If the build product is absent
        """
        log = log or logger
        log.info(f"Build mode: {mode.value}")

        bundle, missing = (None, [])
        if mode == BuildMode.RELEASE:
            bundle, missing = SigningBundle.locate(project_root)
        plan = plan_build(mode, bundle, missing)

        if plan.signed:
            async with self.signing_store.session(plan.bundle, log):
                log.info("Running signed release build...")
                await self.invoker.build(project_root, signed=True, log=log)
            product = project_root / RELEASE_PRODUCT
        else:
            if plan.downgraded:
                log.warning(
                    f"Code signing files not found ({', '.join(plan.missing)}), "
                    f"switching to simulator build"
                )
            else:
                log.info("Building for iOS simulator as requested...")
            await self.invoker.build(project_root, signed=False, log=log)
            product = project_root / SIMULATOR_PRODUCT

        if not product.is_dir():
            raise ArtifactMissingError(
                f"Build completed, but {product.relative_to(project_root)} not found"
            )

        try:
            await copy_artifact(product, output_path)
        except OSError as e:
            raise ArtifactMissingError(f"Cannot copy build product to {output_path}: {e}")
        log.info(f"Build complete: {output_path}")
        return BuildOutcome(
            artifact_path=output_path,
            signed=plan.signed,
            downgraded=plan.downgraded,
        )


async def copy_artifact(product: Path, output_path: Path) -> None:
    """Copy the application bundle to its output location, replacing any old copy."""
    def _copy() -> None:
        if output_path.exists():
            shutil.rmtree(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(product, output_path, symlinks=True)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _copy)
