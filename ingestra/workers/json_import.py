"""json_import worker: JSON documents, flattened, into a table."""

import logging

from ingestra.errors import SourceError
from ingestra.schemas import InlineSource, JobType, RemoteSource
from ingestra.sources import ParsedData, fetch_remote, parse_json
from ingestra.workers.tabular import TabularWorker

logger = logging.getLogger(__name__)


class JsonImportWorker(TabularWorker):
    """
    Nested objects become '_'-joined columns and arrays become JSON text.
    An object wrapping an array (e.g. {"items": [...]}) loads the array.
    """

    job_type = JobType.JSON_IMPORT

    def load_rows(self) -> ParsedData:
        source = self.definition.source
        if isinstance(source, InlineSource):
            parsed = parse_json(source.content)
        elif isinstance(source, RemoteSource):
            parsed = parse_json(fetch_remote(source, self.context.http))
        else:
            raise SourceError("json_import requires JSON fileContent or a url")

        if parsed.nested_paths:
            logger.info(f"Loading rows from nested array '{parsed.nested_paths[0]}'")
        return parsed
