import os
import sys
from pathlib import Path
from typing import List, Optional

from packard.packard_runtime import ScriptRunner, ExecutionResult
from packard.packard_printer import Printer
from packard.packard_serialize import serialize

USAGE = "usage: psl.py [script.psl] [--trace PATH] [--format text|json|yaml]"
FORMATS = ("text", "json", "yaml")


# A basic input prompt.
def read_line(prompt: str) -> str:
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


def parse_args(argv: List[str]) -> dict:
    """Split argv into a script path and the --trace / --format options."""
    opts = {"script": None, "trace": os.environ.get("PACKARD_TRACE") or None, "format": "text"}
    args = list(argv)
    while args:
        arg = args.pop(0)
        if arg in ("--trace", "--format"):
            if not args:
                print(f"Error: {arg} needs a value\n{USAGE}", file=sys.stderr)
                raise SystemExit(2)
            opts[arg[2:]] = args.pop(0)
        elif arg in ("-h", "--help"):
            print(USAGE)
            raise SystemExit(0)
        elif arg.startswith("-"):
            print(f"Error: unknown option {arg}\n{USAGE}", file=sys.stderr)
            raise SystemExit(2)
        elif opts["script"] is None:
            opts["script"] = arg
        else:
            print(f"Error: unexpected argument {arg}\n{USAGE}", file=sys.stderr)
            raise SystemExit(2)
    if opts["format"] not in FORMATS:
        print(f"Error: unknown format {opts['format']!r}\n{USAGE}", file=sys.stderr)
        raise SystemExit(2)
    return opts


def print_result(result: ExecutionResult, fmt: str, printer: Printer):
    # Side effects other than the error report itself (trace warnings)
    for effect in result.side_effects:
        if effect.get('topics') != ['stderr']:
            continue
        message = effect.get('message', '')
        if message != result.error_message:
            print(message, file=sys.stderr)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return
    if fmt == "text":
        print(printer.pformat(result.value))
        for name, value in result.store.items():
            print(f"  {name} = {printer.pformat(value)}")
    else:
        print(serialize(result, fmt=fmt).rstrip("\n"))


def run_script_file(file_path: str, trace: Optional[str] = None, fmt: str = "text"):
    """Run a script file non-interactively and exit with appropriate status."""
    runner = ScriptRunner(trace_path=trace)
    printer = Printer()
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    result = runner.handle_script(source)
    print_result(result, fmt, printer)
    if result.status == 'error':
        raise SystemExit(1)


def main(argv: Optional[List[str]] = None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    opts = parse_args(sys.argv[1:] if argv is None else argv)
    if opts["script"] is not None:
        run_script_file(opts["script"], opts["trace"], opts["format"])
        return

    print("Packard REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner(trace_path=opts["trace"])
    printer = Printer()

    # REPL Loop: every line is a program of its own
    while True:
        try:
            raw = read_line(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break

            result = runner.handle_script(line)
            print_result(result, opts["format"], printer)

        except EOFError:
            print("\nExiting.")
            break


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
