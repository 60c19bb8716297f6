__version__ = "0.1.0"

from .exceptions import (
    WdbImporterError as WdbImporterError,
    ValidationError as ValidationError,
    EntityNotFoundError as EntityNotFoundError,
    ConflictError as ConflictError,
    RowValidationError as RowValidationError,
    DataImportError as DataImportError,
    DatabaseError as DatabaseError,
    ConfigError as ConfigError,
)

from .models import (
    EntityKind as EntityKind,
    ImportRow as ImportRow,
    ImportResults as ImportResults,
    CreatedEntity as CreatedEntity,
    SourceModel as SourceModel,
    LabelModel as LabelModel,
    ImportLogModel as ImportLogModel,
    RollbackSummary as RollbackSummary,
)

from .store import (
    EntityStore as EntityStore,
    Query as Query,
)

from .upsert import resolve as resolve
from .taxonomy import resolve_term as resolve_term
from .repository import SourceRepository as SourceRepository
from .resolvers import EntityGraphBuilder as EntityGraphBuilder

from .sequencing import (
    SequencingState as SequencingState,
    begin_row as begin_row,
    end_row as end_row,
)

from .scheduler import (
    JobState as JobState,
    start_job as start_job,
    process_chunk as process_chunk,
    run_job as run_job,
    save_job as save_job,
    load_job as load_job,
)

from .import_log import (
    finish_job as finish_job,
    rollback as rollback,
    get_log as get_log,
    list_logs as list_logs,
    delete_log as delete_log,
)

from .config import (
    ImporterSettings as ImporterSettings,
    load_settings as load_settings,
)
