"""Cleanup of interrupted child process trees.

A nested build tool (make, a shell script) spawns its own children. When
the operator presses Ctrl-C or a command times out, the whole process tree
has to go, otherwise a half-finished compiler keeps writing into the build
directory after we have exited.
"""

import logging

import psutil


def terminate_process_tree(root_pid: int, timeout: float = 3.0) -> int:
    """Terminate a process and all of its descendants.

    Children are terminated before their parents. Processes that ignore
    SIGTERM for longer than ``timeout`` seconds are killed.

    Args:
        root_pid: PID of the root process
        timeout: Seconds to wait for graceful termination

    Returns:
        Number of processes that were signalled
    """
    try:
        root = psutil.Process(root_pid)
    except psutil.NoSuchProcess:
        return 0

    try:
        children = root.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []

    # Kill children first (bottom-up to avoid orphans)
    processes = list(reversed(children)) + [root]
    signalled: list[psutil.Process] = []
    for proc in processes:
        try:
            proc.terminate()
            signalled.append(proc)
            logging.debug(f"Terminated process {proc.pid}")
        except psutil.NoSuchProcess:
            pass  # Already dead
        except psutil.AccessDenied as e:
            logging.warning(f"Failed to terminate process {proc.pid}: {e}")

    _gone, alive = psutil.wait_procs(signalled, timeout=timeout)

    # Force kill any stragglers
    for proc in alive:
        try:
            proc.kill()
            logging.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logging.warning(f"Failed to force kill process {proc.pid}: {e}")

    return len(signalled)
