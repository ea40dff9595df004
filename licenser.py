import argparse
import json
import os
import sys
import textwrap
from dataclasses import asdict, dataclass
from pathlib import Path

import requests
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

__version__ = "0.0.1"

GITHUB_API_URL: str = "https://api.github.com"
LICENSES_ENDPOINT: str = "/licenses"
USER_AGENT: str = "licenser"
REQUEST_TIMEOUT: int = 15
CACHE_DIRNAME: str = ".licenser"
CACHE_FILENAME: str = "licenses.db"
DEFAULT_OUTPUT: str = "LICENSE"


console = Console(stderr=True, highlight=False)
stdoutConsole = Console(highlight=False)


_verbose = False


class LicenserError(Exception):
    """Base class for every failure reported to the user."""


class NetworkError(LicenserError):
    pass


class DecodeError(LicenserError):
    pass


class FileSystemError(LicenserError):
    pass


class LicenseNotFoundError(LicenserError):
    pass


@dataclass(frozen=True)
class License:
    key: str
    name: str
    url: str
    description: str = ""
    implementation: str = ""
    body: str = ""

    @classmethod
    def FromDict(cls, data: object) -> "License":
        """
        Builds a record from a decoded JSON object, ignoring unknown fields.
        Parameters
        ----------
        data : object
            A decoded API or cache entry.
        Returns
        -------
        License
            The record.
        Raises
        ------
        DecodeError
            If data is not an object, lacks a required string field, or holds
            a non-text optional field.
        """

        if not isinstance(data, dict):
            raise DecodeError(f"Expected a license object, got {type(data).__name__}")

        for field in ("key", "name", "url"):

            if not isinstance(data.get(field), str):
                raise DecodeError(f"License entry is missing '{field}'")

        for field in ("description", "implementation", "body"):

            if not isinstance(data.get(field), (str, type(None))):
                raise DecodeError(f"License entry has a non-text '{field}'")

        return cls(
            key=data["key"],
            name=data["name"],
            url=data["url"],
            description=data.get("description") or "",
            implementation=data.get("implementation") or "",
            body=data.get("body") or "",
        )

    def ToDict(self) -> dict[str, str]:
        return asdict(self)


def VerbosePrint(*args, **kwargs):
    """
    Prints output to the console if verbose mode is enabled.
    Parameters
    ----------
    *args
        Variable length argument list to print.
    **kwargs
        Arbitrary keyword arguments for console.print.
    """

    if _verbose:
        console.print(*args, **kwargs)


def GetApiJson(url: str) -> object:
    """
    Makes a GET request to the GitHub licenses API.
    Parameters
    ----------
    url : str
        The absolute URL to request.
    Returns
    -------
    object
        The decoded JSON response.
    Raises
    ------
    NetworkError
        On timeout, transport failure or an error status.
    DecodeError
        If the response body is not valid JSON.
    """

    headers = {
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": USER_AGENT,
    }

    if token := os.environ.get("GITHUB_TOKEN"):
        headers["Authorization"] = f"token {token}"

    VerbosePrint(f"GET {escape(url)}")

    try:
        r = requests.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
        r.raise_for_status()

    except requests.exceptions.Timeout as e:
        raise NetworkError(f"Timeout API ({url})") from e

    except requests.exceptions.HTTPError as e:
        message = f"API ({url}): {e}"

        if e.response is not None and e.response.status_code == 403:
            remaining = e.response.headers.get("X-RateLimit-Remaining", "N/A")
            message += (
                f"\nHint: rate limited (remaining: {remaining}), set GITHUB_TOKEN."
            )

        raise NetworkError(message) from e

    except requests.exceptions.RequestException as e:
        raise NetworkError(f"API ({url}): {e}") from e

    try:

        return r.json()

    except ValueError as e:
        raise DecodeError(f"Bad JSON from {url}: {e}") from e


def FetchLicenseList() -> list[License]:
    """
    Fetches the license catalog. Entries carry metadata and a detail URL but no body.
    Returns
    -------
    list[License]
        One summary record per catalog entry.
    """

    data = GetApiJson(f"{GITHUB_API_URL}{LICENSES_ENDPOINT}")

    if not isinstance(data, list):
        raise DecodeError("Bad license list: expected a JSON array")

    return [License.FromDict(item) for item in data]


def FetchLicense(url: str) -> License:
    """
    Fetches the full record, body included, for one license.
    Parameters
    ----------
    url : str
        The detail URL from the catalog entry.
    Returns
    -------
    License
        The complete record.
    """

    return License.FromDict(GetApiJson(url))


def LoadCache(cacheFilePath: Path) -> list[License]:
    """
    Loads license records from a JSON cache file.
    Parameters
    ----------
    cacheFilePath : Path
        The path to the cache file.
    Returns
    -------
    list[License]
        The cached records.
    Raises
    ------
    FileSystemError
        If the file cannot be read.
    DecodeError
        If the file is not a JSON array of license records.
    """

    try:
        content = cacheFilePath.read_text(encoding="utf-8")

    except OSError as e:
        raise FileSystemError(f"Read cache {cacheFilePath}: {e}") from e

    try:
        data = json.loads(content)

    except json.JSONDecodeError as e:
        raise DecodeError(f"Parse cache {cacheFilePath}: {e}") from e

    if not isinstance(data, list):
        raise DecodeError(f"Parse cache {cacheFilePath}: expected a JSON array")

    try:

        return [License.FromDict(item) for item in data]

    except DecodeError as e:
        raise DecodeError(f"Parse cache {cacheFilePath}: {e}") from e


def SaveCache(cacheFilePath: Path, licenses: list[License]) -> None:
    """
    Saves license records to a JSON cache file, replacing it in one step.
    Parameters
    ----------
    cacheFilePath : Path
        The path to the cache file.
    licenses : list[License]
        The records to save.
    """

    tmpPath = cacheFilePath.with_name(cacheFilePath.name + ".tmp")

    try:

        with open(tmpPath, "w", encoding="utf-8") as f:
            json.dump([lic.ToDict() for lic in licenses], f, indent=2)
        tmpPath.replace(cacheFilePath)

    except OSError as e:
        tmpPath.unlink(missing_ok=True)
        raise FileSystemError(f"Save cache {cacheFilePath}: {e}") from e

    VerbosePrint(f"Cache saved to {escape(str(cacheFilePath))}")


def InitializeCache(cacheFilePath: Path) -> list[License]:
    """
    Downloads every license in the catalog and writes them to the cache.
    The catalog is fetched once, then each entry is replaced by its full record.
    Nothing is written unless every download succeeds.
    Parameters
    ----------
    cacheFilePath : Path
        The path to the cache file.
    Returns
    -------
    list[License]
        The complete records, in catalog order.
    """

    summaries = FetchLicenseList()
    licenses = []

    progressColumns = [
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(bar_width=None),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
    ]

    with Progress(*progressColumns, console=console, transient=True) as progress:
        task = progress.add_task("[cyan]Downloading licenses...", total=len(summaries))

        for summary in summaries:
            progress.update(task, description=f"[cyan]Fetching: {summary.key}")
            lic = FetchLicense(summary.url)
            licenses.append(lic)
            VerbosePrint(f"Downloaded {escape(lic.name)}.")
            progress.advance(task)

    SaveCache(cacheFilePath, licenses)

    return licenses


def DefaultCachePath() -> Path:
    return Path.home() / CACHE_DIRNAME / CACHE_FILENAME


class LicenseRepository:
    """
    In-memory license catalog, loaded once per invocation.
    """

    def __init__(self, licenses: list[License]):
        self.licenses = list(licenses)

    @classmethod
    def Open(
        cls, cacheFilePath: Path | None = None, forceRefresh: bool = False
    ) -> "LicenseRepository":
        """
        Loads the cache, building it from the API first if it is absent.
        Parameters
        ----------
        cacheFilePath : Path | None, optional
            The cache file, by default ~/.licenser/licenses.db.
        forceRefresh : bool, optional
            If True, rebuilds the cache even if it exists, by default False.
        Returns
        -------
        LicenseRepository
            The loaded repository.
        """

        cacheFilePath = cacheFilePath or DefaultCachePath()

        if cacheFilePath.exists() and not forceRefresh:
            VerbosePrint(f"Loading cache {escape(str(cacheFilePath))}...")

            return cls(LoadCache(cacheFilePath))

        if forceRefresh:
            VerbosePrint("Cache refresh forced.")

        try:
            cacheFilePath.parent.mkdir(parents=True, exist_ok=True)

        except OSError as e:
            raise FileSystemError(f"Create {cacheFilePath.parent}: {e}") from e

        console.print(f"Building license cache at {escape(str(cacheFilePath))}")

        return cls(InitializeCache(cacheFilePath))

    def FindByKey(self, key: str) -> License | None:

        for lic in self.licenses:

            if lic.key == key:
                return lic

        return None

    def Keys(self) -> list[str]:
        return [lic.key for lic in self.licenses]


def FormatLicense(lic: License) -> str:
    """
    Renders a record as labeled name, description and implementation, then the body.
    """

    return (
        f"Name: {lic.name}\n\n"
        f"Description: {lic.description}\n\n"
        f"Implementation: {lic.implementation}\n\n"
        f"{lic.body}"
    )


def GetLicense(repository: LicenseRepository, key: str) -> License:
    lic = repository.FindByKey(key)

    if lic is None:
        raise LicenseNotFoundError(f"License '{key}' not found.")

    return lic


def CreateLicenseFile(
    parsedArgs: argparse.Namespace, repository: LicenseRepository
) -> int:
    """
    Writes the license body to the output file, overwriting it.
    Parameters
    ----------
    parsedArgs : argparse.Namespace
        Parsed arguments with `license` and `output`.
    repository : LicenseRepository
        The loaded licenses.
    Returns
    -------
    int
        The exit status.
    """

    lic = GetLicense(repository, parsedArgs.license)
    outputPath = Path(parsedArgs.output)

    try:
        outputPath.write_bytes(lic.body.encode("utf-8"))

    except OSError as e:
        raise FileSystemError(f"writing '{outputPath}': {e}") from e

    stdoutConsole.print(f"Created {escape(str(outputPath))}", soft_wrap=True)

    return 0


def ShowLicense(parsedArgs: argparse.Namespace, repository: LicenseRepository) -> int:
    lic = GetLicense(repository, parsedArgs.license)
    # License text goes out verbatim, bypassing rich rendering
    text = lic.body if parsedArgs.body_only else FormatLicense(lic)
    sys.stdout.write(text + "\n")

    return 0


def ListLicenses(parsedArgs: argparse.Namespace, repository: LicenseRepository) -> int:

    if not repository.licenses:
        console.print("[yellow]No licenses in cache.[/yellow]")

        return 0

    for lic in sorted(repository.licenses, key=lambda x: x.key):
        stdoutConsole.print(
            f"[cyan]{escape(lic.key):<25}[/cyan] : {escape(lic.name)}", soft_wrap=True
        )

    return 0


def BuildGlobalParser() -> argparse.ArgumentParser:
    globalParser = argparse.ArgumentParser(prog="licenser", add_help=False)
    globalParser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    globalParser.add_argument(
        "--cache-file",
        type=Path,
        default=None,
        help=f"Cache file (def: ~/{CACHE_DIRNAME}/{CACHE_FILENAME}).",
    )
    globalParser.add_argument(
        "--refresh", action="store_true", help="Rebuild the cache from the API."
    )
    globalParser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output."
    )

    return globalParser


def BuildArgumentParser(licenseKeys: list[str]) -> argparse.ArgumentParser:
    """
    Builds the full command line parser.
    Parameters
    ----------
    licenseKeys : list[str]
        The known license keys; positional license arguments must be one of them.
    Returns
    -------
    argparse.ArgumentParser
        The parser.
    """

    argumentParser = argparse.ArgumentParser(
        prog="licenser",
        description="Licenser creates license files for your projects.",
        formatter_class=argparse.RawTextHelpFormatter,
        parents=[BuildGlobalParser()],
        epilog=textwrap.dedent(
            """\
    Examples:
      %(prog)s list
      %(prog)s show mit
      %(prog)s new mit -o LICENSE.txt"""
        ),
    )
    subparsers = argumentParser.add_subparsers(dest="command", metavar="COMMAND")

    newParser = subparsers.add_parser("new", help="Create a new license file.")
    newParser.add_argument("license", choices=licenseKeys, metavar="KEY")
    newParser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        default=DEFAULT_OUTPUT,
        help=f"Output file for license (def: {DEFAULT_OUTPUT}).",
    )
    newParser.set_defaults(handler=CreateLicenseFile)

    showParser = subparsers.add_parser("show", help="Print a license.")
    showParser.add_argument("license", choices=licenseKeys, metavar="KEY")
    showParser.add_argument(
        "--body-only", action="store_true", help="Only show the license's text."
    )
    showParser.set_defaults(handler=ShowLicense)

    listParser = subparsers.add_parser("list", help="List available licenses.")
    listParser.set_defaults(handler=ListLicenses)

    return argumentParser


def main(argv: list[str] | None = None) -> int:
    global _verbose

    # Cache options are needed before the full parser can validate license keys
    globalArgs, remainingArgs = BuildGlobalParser().parse_known_args(argv)
    _verbose = globalArgs.verbose

    if not remainingArgs:
        BuildArgumentParser([]).print_help(sys.stderr)

        return 2

    # Top-level help lists no keys, so it must not build the cache
    if remainingArgs[0] in ("-h", "--help"):
        BuildArgumentParser([]).print_help()

        return 0

    try:
        repository = LicenseRepository.Open(globalArgs.cache_file, globalArgs.refresh)

    except DecodeError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        console.print("[yellow]Hint:[/yellow] rerun with --refresh to rebuild the cache.")

        return 1

    except LicenserError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")

        return 1

    argumentParser = BuildArgumentParser(repository.Keys())
    parsedArgs = argumentParser.parse_args(remainingArgs, namespace=globalArgs)

    if parsedArgs.command is None:
        argumentParser.print_help(sys.stderr)

        return 2

    try:

        return parsedArgs.handler(parsedArgs, repository)

    except LicenserError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")

        return 1


if __name__ == "__main__":

    sys.exit(main())
