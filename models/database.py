#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Database connection and management module
Separated from main app for better maintainability
"""
import logging
import os
import sqlite3
from threading import local
from config.settings import DB_PATH, DatabaseConfig

# Thread-local storage for database connections
_local = local()

# Active database file, switched by configure_database()
_db_path = DB_PATH

logger = logging.getLogger('app')

DEFAULT_THEMES = [
    ("Leadership Management",
     "Développer les compétences de leadership et de management d'équipe"),
    ("Communication Efficace",
     "Améliorer la communication interpersonnelle et professionnelle"),
    ("Gestion de Projet",
     "Maîtriser les outils et méthodes de gestion de projet"),
    ("Innovation & Créativité",
     "Stimuler l'innovation et la pensée créative au sein des équipes"),
]


def get_db_path():
    """Return the database file currently in use"""
    return _db_path


def configure_database(path):
    """Point the connection factory at another database file"""
    global _db_path
    close_db()
    _db_path = path


def get_db():
    """Get database connection with optimized settings"""
    if not hasattr(_local, 'connection'):
        _local.connection = sqlite3.connect(
            _db_path,
            timeout=DatabaseConfig.TIMEOUT,
            check_same_thread=DatabaseConfig.CHECK_SAME_THREAD
        )
        _local.connection.row_factory = sqlite3.Row

        # Performance optimizations
        if DatabaseConfig.FOREIGN_KEYS:
            _local.connection.execute("PRAGMA foreign_keys = ON")

        _local.connection.execute(f"PRAGMA journal_mode = {DatabaseConfig.JOURNAL_MODE}")
        _local.connection.execute(f"PRAGMA synchronous = {DatabaseConfig.SYNCHRONOUS}")
        _local.connection.execute(f"PRAGMA cache_size = {DatabaseConfig.CACHE_SIZE}")

    return _local.connection


def close_db():
    """Close database connection"""
    if hasattr(_local, 'connection'):
        _local.connection.close()
        delattr(_local, 'connection')


def init_database():
    """Initialize database with all tables and indexes"""
    conn = get_db()
    cur = conn.cursor()

    tables = [
        # Application accounts
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE COLLATE NOCASE,
            password_hash TEXT NOT NULL,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'user',
            created_at TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime')),
            updated_at TEXT
        )
        """,

        # Staff members (email uniqueness enforced in StaffService)
        """
        CREATE TABLE IF NOT EXISTS staff (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            matricule TEXT,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            position TEXT,
            email TEXT,
            phone TEXT,
            establishment TEXT,
            formation_year TEXT,
            created_at TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime')),
            updated_at TEXT
        )
        """,

        # Training themes
        """
        CREATE TABLE IF NOT EXISTS themes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE COLLATE NOCASE,
            description TEXT,
            created_at TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime')),
            updated_at TEXT
        )
        """,

        # Theme assignments
        """
        CREATE TABLE IF NOT EXISTS staff_trainings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            staff_id INTEGER NOT NULL,
            theme_id INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'active',
            assigned_date TEXT,
            created_at TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime')),
            updated_at TEXT,
            FOREIGN KEY (staff_id) REFERENCES staff(id) ON DELETE CASCADE,
            FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE
        )
        """,

        # Evaluations: indexed columns plus the form body as JSON
        """
        CREATE TABLE IF NOT EXISTS evaluations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            staff_id INTEGER,
            formation_theme TEXT NOT NULL,
            evaluation_type TEXT NOT NULL DEFAULT 'initial',
            initial_evaluation_id INTEGER,
            status TEXT NOT NULL DEFAULT 'completed',
            draft_key TEXT,
            draft_group_key TEXT,
            first_name TEXT,
            last_name TEXT,
            email TEXT,
            fill_date TEXT,
            fu_date TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime')),
            updated_at TEXT,
            form_data TEXT NOT NULL DEFAULT '{}'
        )
        """,

        # Singleton application settings
        """
        CREATE TABLE IF NOT EXISTS app_config (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            company_name TEXT NOT NULL,
            company_logo TEXT,
            theme_color TEXT,
            audit_logging INTEGER NOT NULL DEFAULT 1,
            setup_completed INTEGER NOT NULL DEFAULT 0,
            user_mode TEXT NOT NULL DEFAULT 'single',
            labels TEXT,
            created_at TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime')),
            updated_at TEXT
        )
        """,

        # Audit trail
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            user_name TEXT,
            action TEXT NOT NULL,
            table_name TEXT,
            record_id TEXT,
            old_value TEXT,
            new_value TEXT,
            ip_address TEXT,
            user_agent TEXT,
            timestamp TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime'))
        )
        """,

        # Import history
        """
        CREATE TABLE IF NOT EXISTS import_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            module TEXT NOT NULL,
            operation TEXT NOT NULL,
            user_id INTEGER,
            user_name TEXT,
            file_name TEXT,
            total_rows INTEGER DEFAULT 0,
            success_rows INTEGER DEFAULT 0,
            failed_rows INTEGER DEFAULT 0,
            skipped_rows INTEGER DEFAULT 0,
            error_message TEXT,
            import_details TEXT,
            ip_address TEXT,
            created_at TEXT NOT NULL DEFAULT (DATETIME('now', 'localtime'))
        )
        """
    ]

    for table_sql in tables:
        try:
            cur.execute(table_sql)
        except sqlite3.Error as e:
            logger.error(f"Error creating table: {e}")
            raise

    indexes = [
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_staff_matricule ON staff(matricule)",
        "CREATE INDEX IF NOT EXISTS idx_staff_email ON staff(email)",
        "CREATE INDEX IF NOT EXISTS idx_staff_name ON staff(last_name, first_name)",
        "CREATE INDEX IF NOT EXISTS idx_staff_trainings_staff ON staff_trainings(staff_id)",
        "CREATE INDEX IF NOT EXISTS idx_staff_trainings_theme ON staff_trainings(theme_id)",
        "CREATE INDEX IF NOT EXISTS idx_evaluations_staff ON evaluations(staff_id)",
        "CREATE INDEX IF NOT EXISTS idx_evaluations_status ON evaluations(status)",
        "CREATE INDEX IF NOT EXISTS idx_evaluations_type ON evaluations(evaluation_type)",
        "CREATE INDEX IF NOT EXISTS idx_evaluations_theme ON evaluations(formation_theme)",
        "CREATE INDEX IF NOT EXISTS idx_evaluations_draft_group ON evaluations(draft_group_key)",
        "CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON audit_logs(timestamp)",
        "CREATE INDEX IF NOT EXISTS idx_audit_logs_user ON audit_logs(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_import_logs_module ON import_logs(module)"
    ]

    for index_sql in indexes:
        try:
            cur.execute(index_sql)
        except sqlite3.Error as e:
            logger.warning(f"Could not create index: {e}")

    conn.commit()
    return conn


def seed_default_themes(conn=None):
    """Insert the default training themes when the table is empty"""
    conn = conn or get_db()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(1) FROM themes")
    if cur.fetchone()[0] > 0:
        return 0

    cur.executemany(
        "INSERT INTO themes(name, description) VALUES(?, ?)",
        DEFAULT_THEMES
    )
    conn.commit()
    return len(DEFAULT_THEMES)


def bootstrap_data():
    """Bootstrap initial data if database is empty"""
    conn = get_db()
    cur = conn.cursor()

    seed_default_themes(conn)

    # Bootstrap application settings
    cur.execute("SELECT COUNT(1) FROM app_config")
    if cur.fetchone()[0] == 0:
        from config.settings import COMPANY_NAME
        cur.execute(
            "INSERT INTO app_config(id, company_name) VALUES(1, ?)",
            (COMPANY_NAME,)
        )
        conn.commit()

    # Bootstrap admin account
    cur.execute("SELECT COUNT(1) FROM users")
    if cur.fetchone()[0] == 0:
        from werkzeug.security import generate_password_hash

        bootstrap_user = os.environ.get("APP_USER", "admin@cfpt-ivato.mg").strip().lower()
        bootstrap_pass = os.environ.get("APP_PASS", "admin123").strip()

        cur.execute(
            "INSERT INTO users(email, password_hash, first_name, last_name, role) VALUES(?, ?, ?, ?, ?)",
            (bootstrap_user, generate_password_hash(bootstrap_pass), "Admin", "CFPT", "admin"),
        )
        conn.commit()


class DatabaseManager:
    """Database management helper class"""

    @staticmethod
    def execute_query(query, params=None, fetch=False):
        """Execute a query with optional parameters"""
        conn = get_db()
        cur = conn.cursor()

        try:
            if params:
                cur.execute(query, params)
            else:
                cur.execute(query)

            if fetch:
                return cur.fetchall()
            else:
                conn.commit()
                return cur.rowcount

        except sqlite3.Error:
            conn.rollback()
            raise

    @staticmethod
    def execute_many(query, params_list, commit=True):
        """Execute a query with multiple parameter sets; commit=False inside a transaction"""
        conn = get_db()
        cur = conn.cursor()

        try:
            cur.executemany(query, params_list)
            if commit:
                conn.commit()
            return cur.rowcount

        except sqlite3.Error:
            conn.rollback()
            raise

    @staticmethod
    def transaction(func):
        """Decorator for database transactions"""
        from functools import wraps

        @wraps(func)
        def wrapper(*args, **kwargs):
            conn = get_db()
            try:
                result = func(*args, **kwargs)
                conn.commit()
                return result
            except Exception:
                conn.rollback()
                raise
        return wrapper
