"""data_load worker: any source, optional transforms, one or many targets."""

import logging

from ingestra.schemas import JobType
from ingestra.sources import ParsedData, load_source
from ingestra.transforms import apply_transforms
from ingestra.workers.tabular import TabularWorker

logger = logging.getLogger(__name__)


class DataLoadWorker(TabularWorker):
    job_type = JobType.DATA_LOAD

    def load_rows(self) -> ParsedData:
        parsed = load_source(self.definition.source, self.context.http)
        if self.definition.transform is None:
            return parsed

        rows, headers = apply_transforms(parsed.rows, parsed.headers, self.definition.transform)
        logger.info(f"Transforms: {parsed.row_count} rows in, {len(rows)} rows out")
        return ParsedData(
            rows=rows,
            headers=headers,
            format=parsed.format,
            nested_paths=parsed.nested_paths,
        )
