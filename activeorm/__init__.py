from dotenv import load_dotenv

from activeorm.core_services.Database import Database, RowSet
from activeorm.core_services.Sqlite3Database import Sqlite3Database
from activeorm.database.ActiveQuery import ActiveQuery, PaginationResult
from activeorm.database.ActiveRecord import ActiveRecord
from activeorm.database.MagicActiveRecord import MagicActiveRecord
from activeorm.database.Events import (
    AfterCreateQuery,
    AfterDelete,
    AfterInsert,
    AfterPopulate,
    AfterSave,
    AfterUpdate,
    AfterUpsert,
    BeforeCreateQuery,
    BeforeDelete,
    BeforeInsert,
    BeforePopulate,
    BeforeSave,
    BeforeUpdate,
    BeforeUpsert,
    Event,
    EventDispatcher,
    EventDispatcherProvider,
)
from activeorm.database.Exceptions import (
    ActiveRecordError,
    ConfigurationError,
    InvalidCallError,
    NoResultsFound,
    ReadOnlyPropertyError,
    StaleDataError,
    UnknownPropertyError,
    UnknownRelationError,
    WriteOnlyPropertyError,
)
from activeorm.database.QueryBuilder import Condition, QueryBuilder, Raw
from activeorm.database.active_record.Logging import query_logging
from activeorm.database.active_record.utils.ModelCollection import ModelCollection
from activeorm.database.active_record.utils.Result import Err, Ok, Result
from activeorm.database.active_record.utils.decorators import on, relation
from activeorm.database.fields.Fields import (
    BigIntegerField,
    BooleanField,
    CharField,
    DateField,
    DateTimeField,
    DecimalField,
    Field,
    FloatField,
    IntegerField,
    JsonField,
    SmallIntegerField,
    TextField,
    TimeField,
)
from activeorm.database.mixins.AttributeHandlers import (
    AttributeHandlerProvider,
    DefaultValue,
    DefaultValueOnInsert,
    SetValueOnUpdate,
)
from activeorm.database.mixins.SoftDeletesMixin import SoftDelete
from activeorm.database.mixins.TimestampMixins import DefaultDateTimeOnInsert, SetDateTimeOnUpdate

load_dotenv()
