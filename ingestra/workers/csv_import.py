"""csv_import worker: CSV content into a table."""

from ingestra.errors import SourceError
from ingestra.schemas import InlineSource, JobType, RemoteSource
from ingestra.sources import ParsedData, fetch_remote, parse_csv
from ingestra.workers.tabular import TabularWorker


class CsvImportWorker(TabularWorker):
    job_type = JobType.CSV_IMPORT

    def load_rows(self) -> ParsedData:
        source = self.definition.source
        if isinstance(source, InlineSource):
            return parse_csv(source.content)
        if isinstance(source, RemoteSource):
            return parse_csv(fetch_remote(source, self.context.http))
        raise SourceError("csv_import requires CSV fileContent or a url")
