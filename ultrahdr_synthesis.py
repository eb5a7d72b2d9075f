#!/usr/bin/env python3
#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Ultra HDR synthesis from gain-map HEIC/HEIF photos.

Runs a fixed sequence of external tools against a per-session workspace:

    1. Extract   heif-dec --with-aux ...        -> base-s.jpg + base-s-<aux>.*
    2. Analyze   exiftool (pyexiftool)          -> meta_all.json, max boost hint
    3. Prepare   heif-dec -> y4m -> ffmpeg JPEG (lossless mode only)
    4. Config    metadata.cfg for ultrahdr_app
    5. Package   ultrahdr_app -m 0 ...          -> out_uhdr.jpg

Each step waits for its tool to exit before the next one starts. When packaging
fails (tool missing or non-zero exit), the built-in MPF muxer assembles the
container from the same two JPEGs instead.

Usage:
    ultrahdr-synthesize synthesize IMG_0001.HEIC
    ultrahdr-synthesize synthesize --lossless --output-dir out/ *.HEIC
    ultrahdr-synthesize mux base.jpg gainmap.jpg 4.0 out.jpg
    ultrahdr-synthesize inspect out.jpg
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import ClassVar, Final, Self, override

import exiftool
from exiftool.exceptions import ExifToolException
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from ultrahdr_muxer import MuxerError, inspect_container, mux_ultrahdr_file

__all__: Final[list[str]] = [
    "SynthesisError",
    "ToolMissing",
    "ToolExecutionFailed",
    "NoGainMapFound",
    "SynthesisConfig",
    "GainMapAsset",
    "SynthesisResult",
    "GainMapSynthesisOrchestrator",
    "find_gain_map",
    "parse_boost_hint",
    "format_metadata_cfg",
    "main",
]

__version__: Final[str] = "1.0.0"

type CommandResult = subprocess.CompletedProcess[str]

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_BOOST: Final[float] = 4.0
# ultrahdr_app rejects hdrCapacityMax <= hdrCapacityMin (1.0)
MIN_PACKAGED_BOOST: Final[float] = 1.01

BASE_JPEG: Final[str] = "base-s.jpg"
AUX_GLOB: Final[str] = "base-s-*"
LOSSLESS_Y4M: Final[str] = "base_lossless.y4m"
LOSSLESS_JPEG: Final[str] = "base-lossless.jpg"
GAIN_MAP_JPEG: Final[str] = "gainmap_final.jpg"
METADATA_CFG: Final[str] = "metadata.cfg"
METADATA_DUMP: Final[str] = "meta_all.json"
OUTPUT_JPEG: Final[str] = "out_uhdr.jpg"

# Filename markers identifying the gain map among heif-dec aux outputs, by priority
_GAIN_MAP_MARKERS: Final[tuple[str, ...]] = ("gainmap", "aux", "-1")
_JPEG_SUFFIXES: Final[frozenset[str]] = frozenset({".jpg", ".jpeg"})


# =============================================================================
# Exceptions
# =============================================================================


class SynthesisError(Exception):
    """Base exception for Ultra HDR synthesis errors."""

    pass


class ToolMissing(SynthesisError):
    """An external tool could not be started."""

    __slots__ = ("tool",)

    def __init__(self, message: str, *, tool: str) -> None:
        super().__init__(message)
        self.tool = tool


class ToolExecutionFailed(SynthesisError):
    """An external tool exited with an error or produced no output."""

    __slots__ = ("cmd", "returncode", "stderr")

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


class NoGainMapFound(SynthesisError):
    """Extraction succeeded but no auxiliary image looks like a gain map."""

    pass


# =============================================================================
# Configuration
# =============================================================================


class _AnsiColor(StrEnum):
    """ANSI color codes for terminal output."""

    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    RED = "\033[0;31m"
    GRAY = "\033[0;37m"
    RESET = "\033[0m"


def _get_env_path(var_name: str, /) -> Path | None:
    """Get a Path from environment variable, or None if not set/empty."""
    value = os.environ.get(var_name, "").strip()
    return Path(value) if value else None


def _find_tool(var_name: str, name: str, /) -> str:
    """Tool from environment variable, else PATH lookup, else the bare name."""
    value = os.environ.get(var_name, "").strip()
    return value or shutil.which(name) or name


@dataclass(frozen=True, slots=True, kw_only=True)
class SynthesisConfig:
    """Synthesis configuration.

    Attributes:
        workspace: Scratch directory, cleared at the start of every run
        heif_dec: heif-dec executable
        ffmpeg: ffmpeg executable
        ultrahdr_app: ultrahdr_app executable
        exiftool: exiftool executable
        max_content_boost: Linear max boost; None uses the source hint or 4.0
        gamma: Gain map gamma written to metadata.cfg
        lossless: Re-encode the base through y4m at maximum JPEG quality
        allow_fallback: Use the built-in muxer when packaging fails
        verbose: Debug logging
    """

    workspace: Path
    heif_dec: str = "heif-dec"
    ffmpeg: str = "ffmpeg"
    ultrahdr_app: str = "ultrahdr_app"
    exiftool: str = "exiftool"
    max_content_boost: float | None = None
    gamma: float = 1.0
    lossless: bool = False
    allow_fallback: bool = True
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_content_boost is not None and self.max_content_boost < 1.0:
            msg = f"max_content_boost must be >= 1.0, got {self.max_content_boost}"
            raise ValueError(msg)
        if self.gamma <= 0.0:
            msg = f"gamma must be positive, got {self.gamma}"
            raise ValueError(msg)
        if not self.workspace.is_absolute():
            object.__setattr__(self, "workspace", self.workspace.resolve())

    @classmethod
    def create(
        cls,
        *,
        workspace: Path | None = None,
        max_content_boost: float | None = None,
        gamma: float = 1.0,
        lossless: bool = False,
        allow_fallback: bool = True,
        verbose: bool = False,
    ) -> Self:
        """Create config from arguments with environment variable fallbacks."""
        return cls(
            workspace=(
                workspace
                or _get_env_path("ULTRAHDR_WORKSPACE")
                or Path.cwd() / "UltraHdr_Workspace"
            ),
            heif_dec=_find_tool("HEIF_DEC", "heif-dec"),
            ffmpeg=_find_tool("FFMPEG", "ffmpeg"),
            ultrahdr_app=_find_tool("ULTRAHDR_APP", "ultrahdr_app"),
            exiftool=_find_tool("EXIFTOOL", "exiftool"),
            max_content_boost=max_content_boost,
            gamma=gamma,
            lossless=lossless,
            allow_fallback=allow_fallback,
            verbose=verbose,
        )


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True, slots=True)
class GainMapAsset:
    """Base and gain-map JPEGs ready for packaging."""

    base: Path
    gain_map: Path
    max_content_boost: float
    gamma: float = 1.0


@dataclass(frozen=True, slots=True, kw_only=True)
class SynthesisResult:
    """Outcome of one synthesis run; output is None whenever error is set."""

    input_path: Path
    output: Path | None = None
    error: SynthesisError | MuxerError | None = None
    used_fallback: bool = False
    max_content_boost: float | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.output is not None

    @property
    def message(self) -> str:
        if self.error is not None:
            return str(self.error)
        via = "built-in muxer" if self.used_fallback else "ultrahdr_app"
        return f"{self.output} ({via}, max boost {self.max_content_boost:.2f})"


# =============================================================================
# Pure helpers
# =============================================================================


def find_gain_map(workspace: Path) -> Path | None:
    """Pick the gain map among heif-dec auxiliary outputs.

    Markers are tried in priority order so an explicit "gainmap" name wins over
    a generic aux image such as a depth map.
    """
    candidates = sorted(p for p in workspace.glob(AUX_GLOB) if p.is_file())
    for marker in _GAIN_MAP_MARKERS:
        for path in candidates:
            if marker in path.name.lower():
                return path
    return None


def parse_boost_hint(metadata: Mapping[str, object]) -> float | None:
    """Max content boost hint from GainMapMax / HDRCapacityMax tags.

    The last positive value wins and is floored at 1.0.
    """
    hint: float | None = None
    for key, value in metadata.items():
        if "GainMapMax" not in key and "HDRCapacityMax" not in key:
            continue
        try:
            val = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
        if val > 0.0:
            hint = max(1.0, val)
    return hint


def format_metadata_cfg(max_content_boost: float, gamma: float) -> str:
    """metadata.cfg for ultrahdr_app, one option per line, 6 decimal places."""
    boost = max(MIN_PACKAGED_BOOST, max_content_boost)
    return (
        f"--maxContentBoost {boost:.6f} {boost:.6f} {boost:.6f}\n"
        "--minContentBoost 1.000000 1.000000 1.000000\n"
        f"--gamma {gamma:.6f} {gamma:.6f} {gamma:.6f}\n"
        "--offsetSdr 0.000000 0.000000 0.000000\n"
        "--offsetHdr 0.000000 0.000000 0.000000\n"
        "--hdrCapacityMin 1.000000\n"
        f"--hdrCapacityMax {boost:.6f}\n"
        "--useBaseColorSpace 1\n"
    )


# =============================================================================
# Orchestrator
# =============================================================================


@dataclass(slots=True)
class GainMapSynthesisOrchestrator:
    """Sequential extract -> analyze -> prepare -> package pipeline.

    Not safe for concurrent runs against the same workspace.
    """

    config: SynthesisConfig
    _logger: logging.Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._logger = logger

    @property
    def workspace(self) -> Path:
        return self.config.workspace

    def _run(self, cmd: list[str], step: str, *, cwd: Path | None = None) -> CommandResult:
        """Run one tool to completion, raising typed errors on failure."""
        self._logger.debug("[%s] %s", step, " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=cwd,
                check=False,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolMissing(f"{step}: cannot run {cmd[0]}: {e}", tool=cmd[0]) from e

        if result.returncode != 0:
            raise ToolExecutionFailed(
                f"{step} failed (exit {result.returncode}): {result.stderr.strip()}",
                cmd=cmd,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def clear_workspace(self) -> None:
        """Delete files left by the previous session; failures are ignored."""
        self.workspace.mkdir(parents=True, exist_ok=True)
        for path in self.workspace.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
            except OSError as e:
                self._logger.debug("Could not remove %s: %s", path, e)

    def extract(self, input_path: Path) -> tuple[Path, Path]:
        """Step 1: decode the HEIF into base-s.jpg plus auxiliary images.

        Returns:
            (base JPEG, gain-map image)
        """
        cmd = [
            self.config.heif_dec,
            "--with-aux",
            "--with-exif",
            "--with-xmp",
            "--skip-exif-offset",
            "--no-colons",
            str(input_path.resolve()),
            BASE_JPEG,
        ]
        self._run(cmd, "Extraction", cwd=self.workspace)

        base = self.workspace / BASE_JPEG
        if not base.is_file():
            raise ToolExecutionFailed(
                f"Extraction produced no {BASE_JPEG}", cmd=cmd, returncode=0
            )

        gain_map = find_gain_map(self.workspace)
        if gain_map is None:
            raise NoGainMapFound(f"No gain map among auxiliary images of {input_path.name}")
        self._logger.info("Gain map: %s", gain_map.name)
        return base, gain_map

    def analyze(self, input_path: Path) -> float | None:
        """Step 2 (best effort): dump metadata and read a max boost hint."""
        try:
            with exiftool.ExifToolHelper(
                executable=self.config.exiftool,
                common_args=["-a", "-G1", "-n"],
            ) as et:
                metadata = et.get_metadata(str(input_path))
        except (ExifToolException, OSError) as e:
            self._logger.warning("Metadata analysis skipped: %s", e)
            return None

        if not metadata:
            return None
        tags = metadata[0]
        (self.workspace / METADATA_DUMP).write_text(
            json.dumps(tags, indent=2, default=str), encoding="utf-8"
        )

        hint = parse_boost_hint(tags)
        if hint is not None:
            self._logger.info("Auto-detected max boost: %.2f", hint)
        return hint

    def prepare_base(self, input_path: Path, base: Path) -> Path:
        """Step 3: lossless mode re-encodes the primary via y4m at -q:v 1."""
        if not self.config.lossless:
            return base

        y4m = self.workspace / LOSSLESS_Y4M
        jpeg = self.workspace / LOSSLESS_JPEG
        self._run([self.config.heif_dec, str(input_path.resolve()), str(y4m)], "Y4M extraction")
        self._run(
            [
                self.config.ffmpeg,
                "-i", str(y4m),
                "-q:v", "1",
                "-pix_fmt", "yuvj444p",
                str(jpeg),
                "-y",
            ],
            "Y4M to JPEG",
        )
        if not jpeg.is_file():
            raise ToolExecutionFailed(
                f"ffmpeg produced no {LOSSLESS_JPEG}", cmd=[self.config.ffmpeg], returncode=0
            )
        return jpeg

    def prepare_gain_map(self, gain_map: Path) -> Path:
        """Convert a non-JPEG gain map to gainmap_final.jpg."""
        if gain_map.suffix.lower() in _JPEG_SUFFIXES:
            return gain_map

        jpeg = self.workspace / GAIN_MAP_JPEG
        self._run(
            [self.config.ffmpeg, "-i", str(gain_map), "-q:v", "1", str(jpeg), "-y"],
            "Gain map conversion",
        )
        if not jpeg.is_file():
            raise ToolExecutionFailed(
                f"ffmpeg produced no {GAIN_MAP_JPEG}", cmd=[self.config.ffmpeg], returncode=0
            )
        return jpeg

    def write_config(self, asset: GainMapAsset) -> Path:
        """Step 4: emit metadata.cfg."""
        cfg = self.workspace / METADATA_CFG
        cfg.write_text(format_metadata_cfg(asset.max_content_boost, asset.gamma), encoding="ascii")
        return cfg

    def package(self, asset: GainMapAsset, cfg: Path) -> Path:
        """Step 5: ultrahdr_app; success means exit 0 and an output file."""
        output = self.workspace / OUTPUT_JPEG
        cmd = [
            self.config.ultrahdr_app,
            "-m", "0",
            "-i", str(asset.base),
            "-g", str(asset.gain_map),
            "-f", str(cfg),
            "-z", str(output),
        ]
        self._run(cmd, "Packaging", cwd=self.workspace)
        if not output.is_file():
            raise ToolExecutionFailed("ultrahdr_app produced no output", cmd=cmd, returncode=0)
        return output

    def fallback_mux(self, asset: GainMapAsset) -> Path:
        """Assemble the container with the built-in MPF muxer."""
        output = self.workspace / OUTPUT_JPEG
        output.unlink(missing_ok=True)
        return mux_ultrahdr_file(asset.base, asset.gain_map, output, asset.max_content_boost)

    def synthesize(self, input_path: Path, output_path: Path | None = None) -> SynthesisResult:
        """Run the full pipeline; every failure is reported in the result."""
        boost: float | None = None
        try:
            if not input_path.is_file():
                raise SynthesisError(f"Input not found: {input_path}")

            self.clear_workspace()
            base, gain_map = self.extract(input_path)
            hint = self.analyze(input_path)

            boost = self.config.max_content_boost or hint or DEFAULT_MAX_CONTENT_BOOST
            asset = GainMapAsset(
                base=self.prepare_base(input_path, base),
                gain_map=self.prepare_gain_map(gain_map),
                max_content_boost=boost,
                gamma=self.config.gamma,
            )
            cfg = self.write_config(asset)

            used_fallback = False
            try:
                output = self.package(asset, cfg)
            except (ToolMissing, ToolExecutionFailed) as e:
                if not self.config.allow_fallback:
                    raise
                self._logger.warning("Packaging failed, using built-in muxer: %s", e)
                output = self.fallback_mux(asset)
                used_fallback = True

            if output_path is not None:
                output_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(output, output_path)
                output = output_path
        except (SynthesisError, MuxerError) as e:
            self._logger.error("Synthesis failed for %s: %s", input_path.name, e)
            return SynthesisResult(input_path=input_path, error=e, max_content_boost=boost)
        except OSError as e:
            error = SynthesisError(f"I/O error: {e}")
            self._logger.error("Synthesis failed for %s: %s", input_path.name, error)
            return SynthesisResult(input_path=input_path, error=error, max_content_boost=boost)

        self._logger.info("Synthesis complete: %s", output)
        return SynthesisResult(
            input_path=input_path,
            output=output,
            used_fallback=used_fallback,
            max_content_boost=boost,
        )


# =============================================================================
# CLI
# =============================================================================


class _ColoredFormatter(logging.Formatter):
    """Logging formatter with colored output."""

    _LEVEL_COLORS: ClassVar[dict[int, str]] = {
        logging.DEBUG: _AnsiColor.GRAY,
        logging.INFO: _AnsiColor.GREEN,
        logging.WARNING: _AnsiColor.YELLOW,
        logging.ERROR: _AnsiColor.RED,
    }

    @override
    def format(self, record: logging.LogRecord) -> str:
        color = self._LEVEL_COLORS.get(record.levelno, _AnsiColor.RESET)
        return f"{color}[{record.levelname}]{_AnsiColor.RESET} {record.getMessage()}"


def _setup_logging(verbose: bool) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h.formatter, _ColoredFormatter) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_ColoredFormatter())
        root.addHandler(handler)


def _default_output(input_path: Path, output_dir: Path | None) -> Path:
    directory = output_dir if output_dir is not None else input_path.parent
    return directory / f"{input_path.stem}_uhdr.jpg"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="ultrahdr-synthesize",
        description="Create Ultra HDR JPEGs from gain-map HEIC/HEIF photos.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s synthesize IMG_0001.HEIC
  %(prog)s synthesize --lossless --output-dir out/ photos/*.HEIC
  %(prog)s mux base.jpg gainmap.jpg 4.0 out.jpg
  %(prog)s inspect out.jpg

Environment variables:
  ULTRAHDR_WORKSPACE  Scratch directory (default: ./UltraHdr_Workspace)
  HEIF_DEC            heif-dec executable
  FFMPEG              ffmpeg executable
  ULTRAHDR_APP        ultrahdr_app executable
  EXIFTOOL            exiftool executable
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    synth = sub.add_parser("synthesize", help="Build Ultra HDR JPEGs from HEIC/HEIF files")
    synth.add_argument("inputs", nargs="+", type=Path, help="HEIC/HEIF input files")
    out = synth.add_mutually_exclusive_group()
    out.add_argument("-o", "--output", type=Path, help="Output file (single input only)")
    out.add_argument("--output-dir", type=Path, help="Output directory")
    synth.add_argument(
        "--lossless",
        action="store_true",
        help="Re-encode the base through y4m at maximum JPEG quality",
    )
    synth.add_argument(
        "--max-boost",
        type=float,
        default=None,
        help=f"Max content boost, linear (default: source hint or {DEFAULT_MAX_CONTENT_BOOST})",
    )
    synth.add_argument("--gamma", type=float, default=1.0, help="Gain map gamma (default: 1.0)")
    synth.add_argument("--workspace", type=Path, help="Scratch directory")
    synth.add_argument(
        "--no-fallback",
        action="store_true",
        help="Fail instead of using the built-in muxer when ultrahdr_app fails",
    )
    synth.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    mux = sub.add_parser("mux", help="Mux an SDR JPEG and a gain-map JPEG")
    mux.add_argument("sdr", type=Path, help="SDR base JPEG")
    mux.add_argument("gain_map", type=Path, help="Gain-map JPEG")
    mux.add_argument("headroom", type=float, help="Max content boost, linear")
    mux.add_argument("output", type=Path, help="Output JPEG")
    mux.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    inspect = sub.add_parser("inspect", help="Show the MPF directory of a container")
    inspect.add_argument("path", type=Path, help="Ultra HDR JPEG")
    inspect.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)
    if args.command == "synthesize" and args.output and len(args.inputs) > 1:
        parser.error("--output requires a single input; use --output-dir")
    return args


def _cmd_synthesize(args: argparse.Namespace) -> int:
    try:
        config = SynthesisConfig.create(
            workspace=args.workspace,
            max_content_boost=args.max_boost,
            gamma=args.gamma,
            lossless=args.lossless,
            allow_fallback=not args.no_fallback,
            verbose=args.verbose,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    orchestrator = GainMapSynthesisOrchestrator(config)

    console.print()
    console.print(f"[bold]Ultra HDR Synthesis v{__version__}[/bold]")
    console.print(f"Workspace: {config.workspace}")
    console.print(f"Inputs: {len(args.inputs)} file(s)")
    console.print(f"Mode: {'lossless' if config.lossless else 'direct'}")
    console.print()

    results: list[SynthesisResult] = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("[cyan]Synthesizing Ultra HDR...", total=len(args.inputs))
        # One workspace: runs are strictly sequential
        for input_path in args.inputs:
            output = args.output or _default_output(input_path, args.output_dir)
            result = orchestrator.synthesize(input_path, output)
            results.append(result)
            if result.success:
                console.print(f"  [green]✓[/green] {input_path.name}")
            else:
                console.print(f"  [red]✗[/red] {input_path.name}: {result.message}")
            progress.advance(task)

    table = Table(title="Synthesis Results")
    table.add_column("Input")
    table.add_column("Status")
    table.add_column("Max Boost", justify="right")
    table.add_column("Output")
    for r in results:
        status = "[green]ok[/green]" if r.success else "[red]failed[/red]"
        if r.used_fallback:
            status += " [yellow](muxer)[/yellow]"
        boost = f"{r.max_content_boost:.2f}" if r.max_content_boost else "-"
        table.add_row(r.input_path.name, status, boost, str(r.output) if r.output else r.message)
    console.print(table)

    failures = sum(1 for r in results if not r.success)
    return 0 if failures == 0 else 1


def _cmd_mux(args: argparse.Namespace) -> int:
    try:
        mux_ultrahdr_file(args.sdr, args.gain_map, args.output, args.headroom)
    except (MuxerError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1
    console.print(f"[green]Wrote[/green] {args.output}")
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    try:
        info = inspect_container(args.path.read_bytes())
    except (MuxerError, OSError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1

    table = Table(title=f"MPF directory: {args.path.name} (version {info.version})")
    table.add_column("#", justify="right")
    table.add_column("Attribute")
    table.add_column("Size", justify="right")
    table.add_column("Offset", justify="right")
    for i, entry in enumerate(info.entries):
        table.add_row(str(i), f"0x{entry.attribute:08X}", str(entry.size), str(entry.offset))
    console.print(table)
    console.print(f"TIFF header at {info.tiff_offset}, XMP: {'yes' if info.xmp else 'no'}")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point."""
    args = parse_args(argv)
    _setup_logging(args.verbose)

    match args.command:
        case "synthesize":
            code = _cmd_synthesize(args)
        case "mux":
            code = _cmd_mux(args)
        case "inspect":
            code = _cmd_inspect(args)
        case _:
            code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
