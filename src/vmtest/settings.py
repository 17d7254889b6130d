"""Environment overrides for VM options."""

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from vmtest import constants
from vmtest.exceptions import EnvironmentConfigError
from vmtest.models import GuestArch


class Settings(BaseSettings):
    """Fallbacks for unset VMOptions fields, read from VMTEST_* variables.

    Example: VMTEST_QEMU="qemu-system-x86_64 -enable-kvm -m 1G"

    Empty variables count as unset.
    """

    model_config = SettingsConfigDict(
        env_prefix=constants.ENV_PREFIX,
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    qemu: str | None = None
    """Executable followed by baseline flags, split with shell quoting rules."""

    qemu_arch: GuestArch | None = None
    kernel: str | None = None
    initramfs: str | None = None


def load_settings() -> Settings:
    """Read VMTEST_* from the process environment.

    Raises:
        EnvironmentConfigError: A variable holds a value that cannot be used
            (e.g. an unknown VMTEST_QEMU_ARCH)
    """
    try:
        return Settings()
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else ""
        variable = f"{constants.ENV_PREFIX}{field.upper()}"
        raise EnvironmentConfigError(
            f"malformed environment configuration: {variable}: {first['msg']}",
            variable=variable,
            context={"input": first.get("input")},
        ) from e
