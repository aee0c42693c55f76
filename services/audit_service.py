#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Audit trail persistence
"""
import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional

from config.settings import EvaluationConfig
from models.database import DatabaseManager, get_db
from utils.dates import now_str

logger = logging.getLogger('app')


def _dump(value) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def _load(value):
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


class AuditLogService:
    """Rows of the audit_logs table"""

    @staticmethod
    def record(action, table_name=None, record_id=None, old_value=None, new_value=None,
               user_id=None, user_name=None, ip_address=None, user_agent=None) -> None:
        """
        Insert one audit row

        The trail never breaks the operation being audited: database
        errors are logged and dropped.
        """
        try:
            DatabaseManager.execute_query("""
                INSERT INTO audit_logs(user_id, user_name, action, table_name, record_id,
                                       old_value, new_value, ip_address, user_agent, timestamp)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                user_id,
                user_name,
                action,
                table_name,
                str(record_id) if record_id is not None else None,
                _dump(old_value),
                _dump(new_value),
                ip_address,
                user_agent,
                now_str(),
            ))
        except sqlite3.Error as e:
            logger.error(f"Could not write audit row ({action} {table_name}/{record_id}): {e}")

    @staticmethod
    def get_audit_logs(user_id=None, action=None, table_name=None,
                       start=None, end=None, limit=100) -> List[dict]:
        """Audit rows, newest first, filtered on any combination of criteria"""
        sql = "SELECT * FROM audit_logs WHERE 1=1"
        params = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if action:
            sql += " AND action = ?"
            params.append(action)
        if table_name:
            sql += " AND table_name = ?"
            params.append(table_name)
        if start:
            sql += " AND timestamp >= ?"
            params.append(start)
        if end:
            # A bare date includes the whole day
            sql += " AND timestamp <= ?"
            params.append(f"{end} 23:59:59" if len(end) == 10 else end)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(int(limit or 100))

        cur = get_db().cursor()
        cur.execute(sql, params)
        logs = []
        for row in cur.fetchall():
            entry = dict(row)
            entry['old_value'] = _load(entry['old_value'])
            entry['new_value'] = _load(entry['new_value'])
            logs.append(entry)
        return logs

    @staticmethod
    def delete_old_audit_logs(days: int = EvaluationConfig.AUDIT_RETENTION_DAYS) -> int:
        """Purge rows older than days, returns the number deleted"""
        cutoff = (datetime.now() - timedelta(days=days)).strftime('%Y-%m-%d %H:%M:%S')
        deleted = DatabaseManager.execute_query(
            "DELETE FROM audit_logs WHERE timestamp < ?", (cutoff,)
        )
        if deleted:
            logger.info(f"Purged {deleted} audit row(s) older than {days} days")
        return deleted
