"""Optimization / sanitizer translation into a BuildVariant."""

from __future__ import annotations

from collections.abc import Iterable

from cpx.exceptions import InvalidOptionError, MultipleSanitizersError
from cpx.models.build import BuildVariant

# opt level -> (build type, compiler flags); an explicit level overrides --release
OPT_TABLE: dict[str, tuple[str, str]] = {
    "0": ("Debug", "-O0"),
    "1": ("RelWithDebInfo", "-O1"),
    "2": ("Release", "-O2"),
    "3": ("Release", "-O3"),
    "s": ("MinSizeRel", "-Os"),
    "fast": ("Release", "-Ofast"),
}

# sanitizer -> (compile flags, link flags)
SANITIZER_FLAGS: dict[str, tuple[str, str]] = {
    "asan": ("-fsanitize=address -fno-omit-frame-pointer", "-fsanitize=address"),
    "tsan": ("-fsanitize=thread", "-fsanitize=thread"),
    "msan": ("-fsanitize=memory -fno-omit-frame-pointer", "-fsanitize=memory"),
    "ubsan": ("-fsanitize=undefined", "-fsanitize=undefined"),
}

# Names used by meson's b_sanitize option
MESON_SANITIZERS: dict[str, str] = {
    "asan": "address",
    "tsan": "thread",
    "msan": "memory",
    "ubsan": "undefined",
}


def determine_build_type(release: bool, opt_level: str | None) -> tuple[str, str]:
    """Normalize (release, opt) into (build_type, compiler_flags)."""
    if opt_level:
        if opt_level not in OPT_TABLE:
            raise InvalidOptionError(
                f"invalid optimization level '{opt_level}' (expected one of: "
                f"{', '.join(OPT_TABLE)})"
            )
        return OPT_TABLE[opt_level]
    return ("Release" if release else "Debug"), ""


def resolve_sanitizer(requested: Iterable[str]) -> str | None:
    """Validate the requested sanitizers; at most one may be active."""
    names = list(dict.fromkeys(requested))
    for name in names:
        if name not in SANITIZER_FLAGS:
            raise InvalidOptionError(f"unknown sanitizer: {name}")
    if len(names) > 1:
        raise MultipleSanitizersError(names)
    return names[0] if names else None


def sanitizer_flags(sanitizer: str | None) -> tuple[str, str]:
    if not sanitizer:
        return "", ""
    return SANITIZER_FLAGS.get(sanitizer, ("", ""))


def resolve_variant(
    release: bool = False,
    opt_level: str | None = None,
    sanitizers: Iterable[str] = (),
) -> BuildVariant:
    """Build the variant for a set of CLI options.

    Sanitizer exclusivity is checked before anything else so that a bad
    combination fails before any tool is invoked.
    """
    sanitizer = resolve_sanitizer(sanitizers)
    build_type, flags = determine_build_type(release, opt_level)
    if opt_level:
        name = f"O{opt_level}"
    else:
        name = "release" if release else "debug"
    return BuildVariant(name=name, build_type=build_type, opt_flags=flags, sanitizer=sanitizer)


def compile_flags(variant: BuildVariant) -> str:
    """Optimization flags plus sanitizer compile flags, space-joined."""
    san_compile, _ = sanitizer_flags(variant.sanitizer)
    return " ".join(f for f in (variant.opt_flags, san_compile) if f)


def link_flags(variant: BuildVariant) -> str:
    return sanitizer_flags(variant.sanitizer)[1]
