import os
import json
import subprocess

from imagelog.errors import ExifToolError

SENTINEL = '{ready}'


class ExifTool:
    """
    Long-lived exiftool process in -stay_open mode.

    The process starts lazily on the first read() and must be shut down by
    the owner; the processor does this at the end of every invocation so a
    warm worker never carries a stale exiftool between events.
    """

    def __init__(self, executable='exiftool', args=None, shutdown_timeout=5):
        self.executable = executable
        self.args = list(args) if args is not None else ['-json', '-n']
        self.shutdown_timeout = shutdown_timeout
        self._proc = None

    @property
    def running(self):
        return self._proc is not None and self._proc.poll() is None

    def start(self):
        if self.running:
            return
        cmd = [self.executable, '-stay_open', 'True', '-@', '-']
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
            )
        except OSError as e:
            raise ExifToolError(f"Could not start {self.executable}: {e}") from e

    def read(self, file_path):
        # -@ reads one argument per line
        if '\n' in file_path or '\r' in file_path:
            raise ExifToolError(f"Refusing path with a line break: {file_path!r}")
        if not os.path.exists(file_path):
            raise ExifToolError(f"No such file: {file_path}")
        self.start()

        # One argument per line, -execute ends the command
        command = '\n'.join(self.args + [file_path, '-execute']) + '\n'
        try:
            self._proc.stdin.write(command)
            self._proc.stdin.flush()
        except (OSError, ValueError) as e:
            raise ExifToolError(f"ExifTool pipe closed: {e}") from e

        lines = []
        while True:
            line = self._proc.stdout.readline()
            if not line:
                raise ExifToolError("ExifTool exited before finishing the command")
            if line.strip() == SENTINEL:
                break
            lines.append(line)

        output = ''.join(lines).strip()
        if not output:
            raise ExifToolError(f"ExifTool returned no data for {os.path.basename(file_path)}")
        try:
            return json.loads(output)[0]
        except (ValueError, IndexError, KeyError) as e:
            raise ExifToolError(f"Unreadable ExifTool output for {file_path}: {e}") from e

    def shutdown(self):
        proc, self._proc = self._proc, None
        if proc is None:
            return
        try:
            if proc.poll() is None:
                proc.stdin.write('-stay_open\nFalse\n')
                proc.stdin.flush()
                proc.stdin.close()
                proc.wait(timeout=self.shutdown_timeout)
        except (OSError, ValueError, subprocess.TimeoutExpired):
            proc.kill()
            proc.wait()
        finally:
            if proc.stdout:
                proc.stdout.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
