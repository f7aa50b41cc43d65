"""
Image Conversion Pipeline
Runs the external ImageMagick convert tool as a streaming stdin -> stdout filter
"""

import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import IO, List, Tuple

from .models import ProcessError

DEFAULT_BINARY = '/opt/bin/convert'

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ConversionSpec:
    """Converter executable and its arguments for one conversion"""
    binary: str
    args: Tuple[str, ...]

    @property
    def argv(self) -> List[str]:
        return [self.binary, *self.args]


def thumbnail_square(size: str, binary: str = DEFAULT_BINARY) -> ConversionSpec:
    """
    Scale down and crop the centre square, JPEG in, PNG out

    Args:
        size: Target square as 'WxH', e.g. '1024x1024'
        binary: Path to the convert executable
    """
    return ConversionSpec(binary, (
        'jpeg:-',
        '-thumbnail', f'{size}^',
        '-gravity', 'center',
        '-extent', size,
        '-alpha', 'off',
        'png:-',
    ))


def transcode(binary: str = DEFAULT_BINARY, source: str = 'png', target: str = 'jpeg') -> ConversionSpec:
    return ConversionSpec(binary, (f'{source}:-', f'{target}:-'))


def watermark(watermark_path: str, binary: str = DEFAULT_BINARY) -> ConversionSpec:
    """Composite a watermark into the bottom-right corner, PNG in, JPEG out"""
    return ConversionSpec(binary, (
        'png:-',
        watermark_path,
        '-gravity', 'southeast',
        '-geometry', '+16+16',
        '-composite',
        'jpeg:-',
    ))


class RunningConversion:
    """
    A started converter process.

    stdin is fed with feed(); stdout is either drained with drain() or handed to
    a consumer (e.g. a multipart upload); wait() observes the exit status. Each
    of the three may run on its own worker.
    """

    def __init__(self, spec: ConversionSpec):
        self.spec = spec
        # stderr is inherited so converter diagnostics reach the host log
        self.process = subprocess.Popen(
            spec.argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=None,
        )

    @property
    def stdout(self) -> IO[bytes]:
        return self.process.stdout

    def feed(self, data: bytes) -> None:
        """Write all input and close stdin to signal end-of-input"""
        stdin = self.process.stdin
        try:
            stdin.write(data)
            stdin.close()
        except BrokenPipeError:
            # The converter stopped reading early; its exit status decides the outcome
            try:
                stdin.close()
            except BrokenPipeError:
                pass

    def drain(self) -> bytes:
        """Read stdout to EOF, keeping chunks in emission order"""
        output = bytearray()
        for chunk in iter(lambda: self.stdout.read(_CHUNK_SIZE), b''):
            output.extend(chunk)
        self.stdout.close()
        return bytes(output)

    def wait(self) -> int:
        """
        Wait for the converter to exit

        Raises:
            ProcessError: If the exit status is nonzero
        """
        exit_code = self.process.wait()
        if exit_code != 0:
            print(f"❌ {self.spec.binary} returned exit code {exit_code}")
            raise ProcessError(exit_code)
        return exit_code


def start_conversion(spec: ConversionSpec) -> RunningConversion:
    """Spawn the converter for a profile, ready to be fed and drained"""
    print(f"🔄 Starting {spec.binary} ({' '.join(spec.args)})")
    return RunningConversion(spec)


def run_conversion(spec: ConversionSpec, data: bytes) -> bytes:
    """
    Pipe bytes through the converter and collect its output

    Args:
        spec: Converter argv profile
        data: Input image bytes

    Returns:
        bytes: Everything the converter wrote to stdout

    Raises:
        ProcessError: If the converter exits with a nonzero status
        FileNotFoundError: If the converter binary is missing
    """
    conversion = start_conversion(spec)

    with ThreadPoolExecutor(max_workers=3) as pool:
        feeding = pool.submit(conversion.feed, data)
        output = pool.submit(conversion.drain)
        exited = pool.submit(conversion.wait)

    feeding.result()
    exited.result()
    return output.result()
