#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Database backup and restore module
Zip archives holding a SQLite backup-API copy of the database plus metadata
"""
import os
import re
import sqlite3
import tempfile
import zipfile
from datetime import datetime, timedelta
from pathlib import Path
import json
import logging

from config.settings import BACKUP_DIR
from models.database import close_db, get_db_path
from utils.errors import ResourceNotFoundError, ValidationError

BACKUP_NAME_PATTERN = re.compile(r'^backup_[A-Za-z0-9_]+\.zip$')
METADATA_FILE = 'backup_metadata.json'
DATABASE_FILE = 'app_backup.db'


# ========== Configuration ==========

class BackupConfig:
    """Backup configuration settings"""

    BACKUP_DIR = BACKUP_DIR

    # Retention settings
    MAX_BACKUPS = 30  # Keep last 30 backups
    MAX_BACKUP_AGE_DAYS = 90  # Delete backups older than 90 days

    @classmethod
    def ensure_backup_dir(cls, backup_dir=None):
        """Ensure backup directory exists"""
        backup_dir = backup_dir or cls.BACKUP_DIR
        os.makedirs(backup_dir, exist_ok=True)

        # Create .gitignore to exclude backups from git
        gitignore_path = os.path.join(backup_dir, '.gitignore')
        if not os.path.exists(gitignore_path):
            with open(gitignore_path, 'w', encoding='utf-8') as f:
                f.write('# Ignore all backup files\n')
                f.write('*.zip\n')
                f.write('*.db\n')
                f.write('\n')
                f.write('# Keep the directory\n')
                f.write('!.gitignore\n')


# ========== Backup Manager ==========

class BackupManager:
    """Database backup and restore manager"""

    def __init__(self, backup_dir=None, db_path=None):
        self.logger = logging.getLogger('app')
        self.backup_dir = backup_dir or BackupConfig.BACKUP_DIR
        self._db_path = db_path
        BackupConfig.ensure_backup_dir(self.backup_dir)

    @property
    def db_path(self):
        return self._db_path or get_db_path()

    def _path_for(self, backup_name):
        if not backup_name or not BACKUP_NAME_PATTERN.match(backup_name):
            raise ValidationError(f"Nom de sauvegarde invalide: {backup_name}")
        backup_path = os.path.join(self.backup_dir, backup_name)
        if not os.path.exists(backup_path):
            raise ResourceNotFoundError(f"Sauvegarde introuvable: {backup_name}")
        return backup_path

    def create_backup(self, description='', backup_type='full'):
        """
        Create a database backup

        Args:
            description: Optional backup description
            backup_type: 'full', 'manual' or 'safety'

        Returns:
            dict: Backup information (name, size, timestamp)
        """
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
        backup_name = f"backup_{backup_type}_{timestamp}.zip"
        backup_path = os.path.join(self.backup_dir, backup_name)

        metadata = {
            'timestamp': datetime.now().isoformat(),
            'type': backup_type,
            'description': description,
            'database': os.path.basename(self.db_path),
            'files': []
        }

        with tempfile.TemporaryDirectory(dir=self.backup_dir) as work_dir:
            db_copy = os.path.join(work_dir, DATABASE_FILE)
            self._copy_database(self.db_path, db_copy)

            with zipfile.ZipFile(backup_path, 'w', zipfile.ZIP_DEFLATED) as backup_zip:
                backup_zip.write(db_copy, DATABASE_FILE)
                metadata['files'].append({
                    'name': DATABASE_FILE,
                    'type': 'database',
                    'size': os.path.getsize(db_copy)
                })
                backup_zip.writestr(METADATA_FILE, json.dumps(metadata, ensure_ascii=False, indent=2))

        backup_info = {
            'name': backup_name,
            'size': os.path.getsize(backup_path),
            'size_formatted': self._format_size(os.path.getsize(backup_path)),
            'timestamp': metadata['timestamp'],
            'type': backup_type,
            'description': description,
            'file_count': len(metadata['files'])
        }

        self.logger.info(f"Backup created successfully: {backup_name} ({backup_info['size_formatted']})")

        self.cleanup_old_backups()
        return backup_info

    def _copy_database(self, source_path, target_path):
        """Copy a database file with the SQLite backup API"""
        source_conn = sqlite3.connect(source_path)
        target_conn = sqlite3.connect(target_path)
        try:
            source_conn.backup(target_conn)
        finally:
            target_conn.close()
            source_conn.close()

    def list_backups(self):
        """
        List all available backups, newest first

        Returns:
            list: List of backup information dictionaries
        """
        backups = []
        for backup_file in Path(self.backup_dir).glob('backup_*.zip'):
            backup_info = self._get_backup_info(backup_file)
            if backup_info:
                backups.append(backup_info)
        backups.sort(key=lambda b: b['created'], reverse=True)
        return backups

    def _get_backup_info(self, backup_path):
        """
        Extract backup information from backup file

        Args:
            backup_path: Path to backup ZIP file

        Returns:
            dict: Backup information, None for an unreadable archive
        """
        try:
            with zipfile.ZipFile(backup_path, 'r') as backup_zip:
                metadata = {}
                if METADATA_FILE in backup_zip.namelist():
                    metadata = json.loads(backup_zip.read(METADATA_FILE).decode('utf-8'))
        except (zipfile.BadZipFile, ValueError, OSError) as e:
            self.logger.error(f"Failed to get backup info for {backup_path}: {e}")
            return None

        size = os.path.getsize(backup_path)
        created = metadata.get('timestamp') or datetime.fromtimestamp(os.path.getmtime(backup_path)).isoformat()
        return {
            'name': os.path.basename(backup_path),
            'size': size,
            'size_formatted': self._format_size(size),
            'created': created,
            'created_formatted': datetime.fromisoformat(created).strftime('%Y-%m-%d %H:%M:%S'),
            'type': metadata.get('type', 'unknown'),
            'description': metadata.get('description', ''),
            'file_count': len(metadata.get('files', []))
        }

    def restore_backup(self, backup_name):
        """
        Restore the database from a backup

        A safety backup of the current database is taken first.

        Args:
            backup_name: Name of backup file to restore

        Returns:
            dict: Restore result information
        """
        backup_path = self._path_for(backup_name)

        with zipfile.ZipFile(backup_path, 'r') as backup_zip:
            if DATABASE_FILE not in backup_zip.namelist():
                raise ValidationError(f"La sauvegarde {backup_name} ne contient pas de base de données")

        safety_backup = self.create_backup('Sauvegarde de sécurité avant restauration', backup_type='safety')

        with zipfile.ZipFile(backup_path, 'r') as backup_zip:
            with tempfile.TemporaryDirectory(dir=self.backup_dir) as work_dir:
                extracted_path = backup_zip.extract(DATABASE_FILE, work_dir)
                close_db()
                self._copy_database(extracted_path, self.db_path)

        self.logger.info(f"Database restored from: {backup_name}")

        return {
            'timestamp': datetime.now().isoformat(),
            'backup_name': backup_name,
            'safety_backup': safety_backup['name'],
            'restored_files': [{'name': DATABASE_FILE, 'type': 'database', 'target': self.db_path}]
        }

    def delete_backup(self, backup_name):
        """
        Delete a backup file

        Args:
            backup_name: Name of backup file to delete
        """
        os.remove(self._path_for(backup_name))
        self.logger.info(f"Backup deleted: {backup_name}")

    def backup_path(self, backup_name):
        """Absolute path of an existing backup, for downloads"""
        return self._path_for(backup_name)

    def cleanup_old_backups(self):
        """
        Apply the retention policy

        Returns:
            list: names of the deleted backups
        """
        backups = self.list_backups()
        deleted = []

        # Delete backups exceeding MAX_BACKUPS
        for backup in backups[BackupConfig.MAX_BACKUPS:]:
            os.remove(os.path.join(self.backup_dir, backup['name']))
            deleted.append(backup['name'])
            self.logger.info(f"Deleted excess backup: {backup['name']}")

        # Delete backups older than MAX_BACKUP_AGE_DAYS
        cutoff_date = datetime.now() - timedelta(days=BackupConfig.MAX_BACKUP_AGE_DAYS)
        for backup in backups[:BackupConfig.MAX_BACKUPS]:
            if datetime.fromisoformat(backup['created']) < cutoff_date:
                os.remove(os.path.join(self.backup_dir, backup['name']))
                deleted.append(backup['name'])
                self.logger.info(f"Deleted old backup: {backup['name']}")

        return deleted

    @staticmethod
    def _format_size(size_bytes):
        """Format file size in human-readable format"""
        for unit in ['B', 'KB', 'MB', 'GB']:
            if size_bytes < 1024.0:
                return f"{size_bytes:.2f} {unit}"
            size_bytes /= 1024.0
        return f"{size_bytes:.2f} TB"


# ========== Backup Statistics ==========

def get_backup_statistics(manager=None):
    """
    Get backup statistics

    Returns:
        dict: Backup statistics
    """
    manager = manager or BackupManager()
    backups = manager.list_backups()

    if not backups:
        return {
            'total_backups': 0,
            'total_size': 0,
            'total_size_formatted': '0 B',
            'oldest_backup': None,
            'newest_backup': None,
            'backup_types': {}
        }

    total_size = sum(b['size'] for b in backups)
    backup_types = {}

    for backup in backups:
        backup_type = backup.get('type', 'unknown')
        if backup_type not in backup_types:
            backup_types[backup_type] = 0
        backup_types[backup_type] += 1

    return {
        'total_backups': len(backups),
        'total_size': total_size,
        'total_size_formatted': BackupManager._format_size(total_size),
        'oldest_backup': backups[-1],
        'newest_backup': backups[0],
        'backup_types': backup_types
    }
