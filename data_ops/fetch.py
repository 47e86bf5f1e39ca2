"""
Data fetcher — pulls variable columns from the CSV endpoint into the store.

Resource layout under the endpoint:
  - per-variable:  <collection>/<variable>.csv   (or <collection>-<variable>.csv
                   with path_style="flat")
  - shared wide:   meta/<collection>.csv
  - per region:    <collection>/<region>/<variable>.csv and
                   meta/<collection>/<region>.csv

FetchCoordinator.ensure() fetches only what the store is missing, downloads
each physical resource at most once at a time, and commits a request's
results to the store all-or-nothing.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, NamedTuple, Optional

import requests

import config
from .errors import ConfigurationError, FetchError, ParseError
from .parser import ParsedTable, parse_csv
from .store import VariableStore

logger = logging.getLogger("scatterview")

# Pseudo-variable naming a collection's shared wide file
WIDE_KEY = "meta"


class Resource(NamedTuple):
    """One physical file to download."""

    key: str  # variable name, or WIDE_KEY for the shared file
    url: str
    schema: str  # "narrow" or "wide"


def http_get(url: str, timeout: float = None) -> bytes:
    """GET a resource body.

    Raises:
        requests.HTTPError: On a non-2xx status.
        requests.RequestException: On connection problems or timeouts.
    """
    resp = requests.get(url, timeout=timeout or config.FETCH_TIMEOUT)
    resp.raise_for_status()
    return resp.content


def _base(endpoint: str) -> str:
    return endpoint if endpoint.endswith("/") else endpoint + "/"


def resource_url(
    endpoint: str,
    collection: Optional[str],
    variable: str,
    region: Optional[str] = None,
    path_style: str = "nested",
) -> str:
    """Build the URL of a variable's resource (or the wide file for WIDE_KEY).

    Raises:
        ConfigurationError: If the collection is only published per region
            and no region is given.
    """
    base = _base(endpoint)
    wide = variable == WIDE_KEY
    if region:
        if wide:
            return f"{base}meta/{collection}/{region}.csv"
        return f"{base}{collection}/{region}/{variable}.csv"
    if collection in config.REGIONAL_COLLECTIONS:
        raise ConfigurationError(f"Collection '{collection}' requires a region")
    if wide:
        return f"{base}meta/{collection}.csv"
    if not collection:
        return f"{base}{variable}.csv"
    if path_style == "flat":
        return f"{base}{collection}-{variable}.csv"
    return f"{base}{collection}/{variable}.csv"


def _done_future(result) -> Future:
    future: Future = Future()
    future.set_result(result)
    return future


def _when_all(futures: list[Future], callback: Callable[[], None]) -> None:
    """Call ``callback`` once every future has finished (in any state)."""
    remaining = [len(futures)]
    lock = threading.Lock()

    def _one_done(_):
        with lock:
            remaining[0] -= 1
            last = remaining[0] == 0
        if last:
            callback()

    for f in futures:
        f.add_done_callback(_one_done)


class FetchCoordinator:
    """Fetches missing variables for one view's VariableStore.

    Args:
        store: Store to check and fill.
        endpoint: Base URL of the CSV files.
        wide_variables: Per-collection column lists of the shared wide file
            (position 0 is the id echo). Defaults to config.WIDE_VARIABLES.
        fetcher: Callable url -> body (str or bytes). Defaults to http_get.
        max_workers: Concurrent downloads. Defaults to config.FETCH_MAX_WORKERS.
        path_style: "nested" or "flat" per-variable paths.

    Raises:
        ConfigurationError: If no endpoint is given.
    """

    def __init__(
        self,
        store: VariableStore,
        endpoint: Optional[str],
        wide_variables: Optional[dict] = None,
        fetcher: Optional[Callable[[str], object]] = None,
        max_workers: Optional[int] = None,
        path_style: Optional[str] = None,
    ):
        if not endpoint:
            raise ConfigurationError("No endpoint specified for scatterplot")
        self._store = store
        self.endpoint = endpoint
        self.wide_variables = dict(config.WIDE_VARIABLES if wide_variables is None else wide_variables)
        self._fetcher = fetcher or http_get
        self._path_style = path_style or config.PATH_STYLE
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers or config.FETCH_MAX_WORKERS,
            thread_name_prefix="scatterview-fetch",
        )
        self._lock = threading.RLock()
        # url -> download future; a finished download stays here until the
        # request that owns it has committed (or discarded) its result
        self._inflight: dict[str, Future] = {}
        self._generation = 0
        self._active: Optional[tuple] = None
        self._closed = False

    # ---- Planning ----

    @property
    def generation(self) -> int:
        """Counter bumped whenever the active collection/region changes."""
        return self._generation

    def wide_members(self, collection: Optional[str]) -> list[str]:
        """Variables of a collection that live in its shared wide file."""
        return list(self.wide_variables.get(collection, []))

    def resource_for(self, variable: str, collection: Optional[str], region: Optional[str] = None) -> Resource:
        """Map a variable to the physical resource that contains it."""
        members = self.wide_members(collection)
        if variable in members[1:]:
            url = resource_url(self.endpoint, collection, WIDE_KEY, region, self._path_style)
            return Resource(WIDE_KEY, url, "wide")
        url = resource_url(self.endpoint, collection, variable, region, self._path_style)
        return Resource(variable, url, "narrow")

    def plan(self, variables: Iterable[str], collection: Optional[str], region: Optional[str] = None) -> list[Resource]:
        """Deduplicated resources needed for ``variables``, in first-need order."""
        resources: dict[str, Resource] = {}
        for v in variables:
            resource = self.resource_for(v, collection, region)
            resources.setdefault(resource.url, resource)
        return list(resources.values())

    def missing(self, requested: Iterable[str], collection: Optional[str]) -> list[str]:
        """Requested variables not yet resident, deduplicated, order kept."""
        return [v for v in dict.fromkeys(requested) if v and not self._store.has(collection, v)]

    # ---- Dispatch ----

    def _activate(self, collection: Optional[str], region: Optional[str]) -> None:
        key = (collection, region)
        if self._active is not None and self._active != key:
            old_collection = self._active[0]
            self._store.invalidate(old_collection)
            self._generation += 1
            logger.debug(
                "[Fetch] Switched %s -> %s (generation %d)", self._active, key, self._generation
            )
        self._active = key

    def _load_resource(self, resource: Resource) -> ParsedTable:
        logger.debug("[Fetch] GET %s", resource.url)
        try:
            body = self._fetcher(resource.url)
        except requests.RequestException as e:
            raise FetchError(resource.url, e) from e
        return parse_csv(body, resource.schema)

    def _submit(self, resource: Resource) -> Future:
        # Caller holds self._lock
        future = self._inflight.get(resource.url)
        if future is not None:
            logger.debug("[Fetch] Joining in-flight request for %s", resource.url)
            return future
        future = self._pool.submit(self._load_resource, resource)
        self._inflight[resource.url] = future
        return future

    def _forget(self, resources: list[Resource], futures: list[Future]) -> None:
        # Caller holds self._lock
        for resource, future in zip(resources, futures):
            if self._inflight.get(resource.url) is future:
                del self._inflight[resource.url]

    def _snapshot(self, collection: Optional[str], variables: Iterable[str]) -> dict:
        result = {}
        for v in variables:
            entry = self._store.get(collection, v)
            if entry is not None:
                result[v] = entry
        return result

    def ensure(self, requested: Iterable[str], collection: Optional[str], region: Optional[str] = None) -> Future:
        """Make the requested variables resident for ``collection``.

        A change of collection or region first invalidates the previous
        collection's variables. When nothing is missing the returned future
        is already resolved and no request is made.

        Returns:
            Future resolving to {variable: Variable} for the requested
            variables. It fails with FetchError/ParseError if any resource
            fails (nothing is stored in that case), and is cancelled if the
            collection/region changes before it completes.
        """
        requested = [v for v in dict.fromkeys(requested) if v]
        with self._lock:
            self._activate(collection, region)
            missing = self.missing(requested, collection)
            if not missing:
                logger.debug("[Fetch] Cache hit for %s/%s", collection, requested)
                return _done_future(self._snapshot(collection, requested))

            resources = self.plan(missing, collection, region)
            generation = self._generation
            futures = [self._submit(r) for r in resources]

        outer: Future = Future()
        logger.debug(
            "[Fetch] Missing %s for '%s': %d resource(s)", missing, collection, len(resources)
        )
        _when_all(
            futures,
            lambda: self._complete(outer, generation, collection, requested, resources, futures),
        )
        return outer

    def _complete(self, outer, generation, collection, requested, resources, futures) -> None:
        # Decide under the lock, resolve `outer` outside it: its callbacks may
        # call back into ensure().
        error = None
        with self._lock:
            stale = (
                self._closed
                or generation != self._generation
                or any(f.cancelled() for f in futures)
            )
            if not stale:
                errors = [f.exception() for f in futures if f.exception() is not None]
                if errors:
                    error = errors[0]
                else:
                    for resource, future in zip(resources, futures):
                        table = future.result()
                        if resource.schema == "wide":
                            self._store.put_wide(collection, table, self.wide_members(collection))
                        else:
                            self._store.put(collection, resource.key, table.rows)
                    result = self._snapshot(collection, requested)
            # Store writes are done: later requests now see a cache hit
            self._forget(resources, futures)

        if stale:
            logger.debug("[Fetch] Discarding stale result for '%s'", collection)
            outer.cancel()
        elif outer.cancelled():
            return
        elif error is not None:
            logger.warning("[Fetch] Request for '%s' failed: %s", collection, error)
            outer.set_exception(error)
        else:
            logger.info("[Fetch] Stored %d resource(s) for '%s'", len(resources), collection)
            outer.set_result(result)

    def close(self) -> None:
        """Stop accepting work and drop queued downloads.

        Downloads already running are left to finish, but their results are
        never written to the store.
        """
        with self._lock:
            self._closed = True
        self._pool.shutdown(wait=False, cancel_futures=True)


def extract_columns(table: ParsedTable) -> dict[str, dict]:
    """Fan a wide table out by its own header (position 0 skipped)."""
    columns = {}
    for j, name in enumerate(table.header):
        if j == 0 or name == "id":
            continue
        columns[name] = {
            row_id: row[j]
            for row_id, row in table.rows.items()
            if j < len(row) and row[j] != ""
        }
    return columns


def fetch_reduced_pair(
    endpoint: str,
    var1: str,
    var2: str,
    fetcher: Optional[Callable[[str], object]] = None,
) -> dict[str, dict]:
    """Fetch the pre-joined schools file for an x/y pair.

    The file name is the two variable names sorted and joined by "-".

    Returns:
        {variable: {id: value}} for every column of the file, or an empty
        dict if the file could not be fetched or parsed.
    """
    filename = "-".join(sorted([var1, var2]))
    url = f"{_base(endpoint)}schools/reduced/{filename}.csv"
    try:
        body = (fetcher or http_get)(url)
        return extract_columns(parse_csv(body, "wide"))
    except (requests.RequestException, ParseError) as e:
        logger.warning("Could not fetch reduced pair %s: %s", url, e)
        return {}
