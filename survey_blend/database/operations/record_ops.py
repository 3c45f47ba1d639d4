# Path: survey_blend/database/operations/record_ops.py
"""
Normalized Record Operations

Insert, query and delete operations for NormalizedRecord rows.

Records are never updated in place: replacement is delete + insert, and
every delete returns column snapshots so callers can roll it back.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from survey_blend.constants import MappingType
from survey_blend.database.models.normalized_records import NormalizedRecord


logger = logging.getLogger(__name__)

# Mapping type -> (canonical column, raw column)
DIMENSION_COLUMNS: dict[str, tuple[str, str]] = {
    MappingType.SPECIALTY.value: ('specialty', 'raw_specialty'),
    MappingType.PROVIDER_TYPE.value: ('provider_type', 'raw_provider_type'),
    MappingType.REGION.value: ('region', 'raw_region'),
    MappingType.VARIABLE.value: ('variable', 'raw_variable'),
}

RECORD_COLUMNS = tuple(column.name for column in NormalizedRecord.__table__.columns)


class RecordOperations:
    """
    Operations for NormalizedRecord rows.

    Example:
        with session_scope() as session:
            RecordOperations.insert_records(session, [record.to_row()])
            rows = RecordOperations.query_records(session, variable='Total Cash Compensation')
    """

    @staticmethod
    def insert_records(session: Session, rows: Iterable[dict]) -> list[str]:
        """
        Insert records from column dicts.

        Returns:
            IDs of the inserted records
        """
        records = [NormalizedRecord(**row) for row in rows]
        session.add_all(records)
        session.flush()

        logger.debug(f"Inserted {len(records)} normalized record(s)")
        return [record.record_id for record in records]

    @staticmethod
    def snapshot(record: NormalizedRecord) -> dict:
        """Capture every column of a record."""
        return {name: getattr(record, name) for name in RECORD_COLUMNS}

    @staticmethod
    def find_by_ids(session: Session, record_ids: Iterable[str]) -> list[NormalizedRecord]:
        """Find records by ID."""
        ids = list(record_ids)
        if not ids:
            return []
        return session.query(NormalizedRecord).filter(
            NormalizedRecord.record_id.in_(ids)
        ).all()

    @staticmethod
    def delete_by_ids(session: Session, record_ids: Iterable[str]) -> list[dict]:
        """
        Delete records by ID.

        Returns:
            Snapshots of the deleted records
        """
        records = RecordOperations.find_by_ids(session, record_ids)
        snapshots = [RecordOperations.snapshot(record) for record in records]
        for record in records:
            session.delete(record)
        session.flush()

        logger.debug(f"Deleted {len(records)} normalized record(s)")
        return snapshots

    @staticmethod
    def delete_by_survey(
        session: Session,
        survey_source: str,
        survey_year: int,
    ) -> list[dict]:
        """
        Delete every record of one (source, year) survey.

        Returns:
            Snapshots of the deleted records
        """
        records = session.query(NormalizedRecord).filter_by(
            survey_source=survey_source,
            survey_year=survey_year,
        ).all()
        snapshots = [RecordOperations.snapshot(record) for record in records]
        for record in records:
            session.delete(record)
        session.flush()

        if records:
            logger.info(
                f"Deleted {len(records)} record(s) for survey {survey_source}/{survey_year}"
            )
        return snapshots

    @staticmethod
    def query_records(
        session: Session,
        variable: Optional[str] = None,
        specialties: Optional[Iterable[str]] = None,
        survey_sources: Optional[Iterable[str]] = None,
        survey_years: Optional[Iterable[int]] = None,
    ) -> list[NormalizedRecord]:
        """
        Query records with optional filters.

        Returns:
            Records in stable (source, year, row index, variable) order
        """
        query = session.query(NormalizedRecord)
        if variable is not None:
            query = query.filter(NormalizedRecord.variable == variable)
        if specialties is not None:
            query = query.filter(NormalizedRecord.specialty.in_(list(specialties)))
        if survey_sources is not None:
            query = query.filter(NormalizedRecord.survey_source.in_(list(survey_sources)))
        if survey_years is not None:
            query = query.filter(NormalizedRecord.survey_year.in_(list(survey_years)))

        return query.order_by(
            NormalizedRecord.survey_source,
            NormalizedRecord.survey_year,
            NormalizedRecord.source_row_index,
            NormalizedRecord.variable,
        ).all()

    @staticmethod
    def count_records(session: Session) -> int:
        """Count all records."""
        return session.query(func.count(NormalizedRecord.record_id)).scalar() or 0

    @staticmethod
    def label_inventory(session: Session, mapping_type: str) -> list[tuple[str, str, str, int]]:
        """
        Distinct raw labels of one dimension with their current value.

        Returns:
            List of (raw label, canonical value, survey source, record count)
        """
        canonical_col, raw_col = DIMENSION_COLUMNS[mapping_type]
        raw = getattr(NormalizedRecord, raw_col)
        canonical = getattr(NormalizedRecord, canonical_col)

        rows = session.query(
            raw,
            canonical,
            NormalizedRecord.survey_source,
            func.count(NormalizedRecord.record_id),
        ).group_by(
            raw, canonical, NormalizedRecord.survey_source,
        ).order_by(
            raw, NormalizedRecord.survey_source,
        ).all()
        return [tuple(row) for row in rows]

    @staticmethod
    def referenced_values(session: Session, mapping_type: str) -> set[str]:
        """Distinct canonical values of one dimension."""
        canonical_col, _ = DIMENSION_COLUMNS[mapping_type]
        column = getattr(NormalizedRecord, canonical_col)
        return {value for (value,) in session.query(column).distinct().all()}

    @staticmethod
    def records_with_raw_labels(
        session: Session,
        mapping_type: str,
        raw_labels: Iterable[str],
    ) -> list[NormalizedRecord]:
        """Records whose raw value of one dimension is in raw_labels."""
        labels = list(raw_labels)
        if not labels:
            return []
        _, raw_col = DIMENSION_COLUMNS[mapping_type]
        return session.query(NormalizedRecord).filter(
            getattr(NormalizedRecord, raw_col).in_(labels)
        ).all()


__all__ = ['RecordOperations', 'DIMENSION_COLUMNS', 'RECORD_COLUMNS']
