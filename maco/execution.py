"""Running of called functions as shell commands on a minion."""

from __future__ import annotations

import subprocess

from maco.types import CallRequest, CallResponse, ResultType

DEFAULT_CALL_TIMEOUT = 10
_SHELL = "/bin/bash"
_FAILED_EXIT = -1


def _text(output: bytes | str | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def run_cmd(request: CallRequest) -> CallResponse:
    """Run the request's function and arguments through bash and report the outcome.

    Standard output and standard error are captured together. A timeout of zero
    means the default of ten seconds.
    """
    timeout = request.timeout or DEFAULT_CALL_TIMEOUT
    shell = " ".join([request.function, *request.args])
    response = CallResponse(id=request.id, type=ResultType.OK)
    try:
        completed = subprocess.run(
            [_SHELL, "-c", shell],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        response.type = ResultType.ERROR
        response.ret_code = _FAILED_EXIT
        response.error = _text(exc.output)
        return response
    except OSError as exc:
        response.type = ResultType.ERROR
        response.ret_code = _FAILED_EXIT
        response.error = str(exc)
        return response

    output = completed.stdout or b""
    response.ret_code = completed.returncode
    if completed.returncode != 0:
        response.type = ResultType.ERROR
        response.error = _text(output)
    else:
        response.result = output.removesuffix(b"\n")
    return response