"""
taskledger Database Schema

SQLite schema for the fact log, the projection tables and velocity history.
"""

SCHEMA_SQLITE = """
CREATE TABLE IF NOT EXISTS facts (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    fact_id TEXT NOT NULL UNIQUE,
    fact_type TEXT NOT NULL,
    aggregate_type TEXT NOT NULL,
    aggregate_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL,
    version INTEGER NOT NULL CHECK (version >= 1)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_facts_aggregate_version ON facts(aggregate_type, aggregate_id, version);
CREATE INDEX IF NOT EXISTS idx_facts_type_created ON facts(fact_type, created_at);
CREATE INDEX IF NOT EXISTS idx_facts_created ON facts(created_at);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    settings TEXT NOT NULL DEFAULT '{}',
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status);

CREATE TABLE IF NOT EXISTS sprints (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    name TEXT NOT NULL,
    goal TEXT,
    status TEXT NOT NULL DEFAULT 'planning',
    start_date TEXT,
    end_date TEXT,
    started_at TEXT,
    completed_at TEXT,
    velocity_committed REAL,
    velocity_completed REAL,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sprints_project ON sprints(project_id, status);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    parent_id TEXT,
    sprint_id TEXT,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'todo',
    priority TEXT NOT NULL DEFAULT 'medium',
    type TEXT NOT NULL DEFAULT 'task',
    assignee TEXT,
    labels TEXT NOT NULL DEFAULT '[]',
    due_date TEXT,
    estimate_points REAL,
    estimate_hours REAL,
    actual_hours REAL,
    blocked_reason TEXT,
    branch_name TEXT,
    linked_commits TEXT NOT NULL DEFAULT '[]',
    linked_prs TEXT NOT NULL DEFAULT '[]',
    external_issue_id TEXT,
    started_at TEXT,
    completed_at TEXT,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id, status);
CREATE INDEX IF NOT EXISTS idx_tasks_sprint ON tasks(sprint_id);
CREATE INDEX IF NOT EXISTS idx_tasks_external_issue ON tasks(external_issue_id);

CREATE TABLE IF NOT EXISTS velocity_history (
    project_id TEXT NOT NULL,
    sprint_id TEXT NOT NULL,
    committed_points REAL NOT NULL,
    completed_points REAL NOT NULL,
    completion_rate REAL NOT NULL,
    recorded_at TEXT NOT NULL,
    PRIMARY KEY (project_id, sprint_id, recorded_at)
);
CREATE INDEX IF NOT EXISTS idx_velocity_project_recorded ON velocity_history(project_id, recorded_at);
"""
