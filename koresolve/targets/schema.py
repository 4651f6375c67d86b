"""Pydantic models for the project configuration file.

The project file (``.ko.yaml``) uses camelCase keys; models accept both the
file spelling and the Python field names.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from koresolve.modules.resolver import strip_scheme


class BuildConfig(BaseModel):
    """A declared build target.

    Attributes:
        id: Optional label used in error messages.
        dir: Directory relative to the working directory.
        main: Entrypoint file or directory relative to ``dir``.
        env: Extra environment for the compiler, passed through untouched.
        flags: Extra compiler flags, passed through untouched.
        ldflags: Extra linker flags, passed through untouched.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default="", description="Build identifier")
    dir: str = Field(default="", description="Directory relative to working directory")
    main: str = Field(default="", description="Entrypoint file or directory")
    env: tuple[str, ...] = Field(default=(), description="Build environment")
    flags: tuple[str, ...] = Field(default=(), description="Compiler flags")
    ldflags: tuple[str, ...] = Field(default=(), description="Linker flags")

    def label(self, index: int) -> str:
        """Return a human-readable identifier for error messages."""
        return self.id or f"builds[{index}]"


class ProjectConfig(BaseModel):
    """Project-wide configuration.

    Attributes:
        default_base_image: Base image for targets without an override.
        base_image_overrides: Per import path base images.
        builds: Declared build targets, in file order.
        default_platforms: Platforms to build when none are requested.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    default_base_image: str | None = Field(
        default=None, alias="defaultBaseImage", description="Default base image"
    )
    base_image_overrides: dict[str, str] = Field(
        default_factory=dict,
        alias="baseImageOverrides",
        description="Base image per import path",
    )
    builds: tuple[BuildConfig, ...] = Field(
        default=(), description="Declared build targets"
    )
    default_platforms: tuple[str, ...] = Field(
        default=(), alias="defaultPlatforms", description="Default platforms"
    )

    @field_validator("default_base_image")
    @classmethod
    def validate_default_base_image(cls, v: str | None) -> str | None:
        """Treat a blank default base image as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("base_image_overrides")
    @classmethod
    def normalize_override_keys(cls, v: dict[str, str]) -> dict[str, str]:
        """Key overrides by bare import path."""
        normalized: dict[str, str] = {}
        for import_path, reference in v.items():
            if not reference or not reference.strip():
                raise ValueError(f"base image override for {import_path} is empty")
            normalized[strip_scheme(import_path)] = reference.strip()
        return normalized


__all__ = ["BuildConfig", "ProjectConfig"]
