from alembic import op


# revision identifiers, used by Alembic.
revision = "create_cron_jobs_and_history"
down_revision = "create_organizations_and_feature_flags"
branch_labels = None
depends_on = None


def upgrade():
    """Create cron_jobs and cron_job_history tables."""
    op.execute(
        """
        CREATE TABLE cron_jobs (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL
                REFERENCES organizations(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            cron_expression TEXT NOT NULL,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            webhook_url TEXT NOT NULL,
            method TEXT NOT NULL DEFAULT 'GET',
            headers JSONB NOT NULL DEFAULT '{}',
            body TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'active',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            timeout INTEGER NOT NULL DEFAULT 30000,
            last_executed_at TIMESTAMPTZ,
            next_execution_at TIMESTAMPTZ,
            execution_count INTEGER NOT NULL DEFAULT 0,
            success_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0,
            tags TEXT[] NOT NULL DEFAULT '{}',
            metadata JSONB NOT NULL DEFAULT '{}',
            version INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT cron_jobs_status_check
                CHECK (status IN ('active', 'paused', 'completed', 'failed')),
            CONSTRAINT cron_jobs_method_check
                CHECK (method IN ('GET', 'POST', 'PUT', 'DELETE', 'PATCH')),
            CONSTRAINT cron_jobs_max_retries_check
                CHECK (max_retries BETWEEN 0 AND 10),
            CONSTRAINT cron_jobs_timeout_check
                CHECK (timeout BETWEEN 1000 AND 120000)
        );
        """
    )

    op.execute(
        "CREATE INDEX cron_jobs_org_status_idx ON cron_jobs (organization_id, status);"
    )
    op.execute(
        "CREATE INDEX cron_jobs_next_execution_idx ON cron_jobs (next_execution_at);"
    )

    op.execute(
        """
        CREATE TABLE cron_job_history (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL
                REFERENCES organizations(id) ON DELETE CASCADE,
            cron_job_id UUID NOT NULL
                REFERENCES cron_jobs(id) ON DELETE CASCADE,
            job_name TEXT NOT NULL,
            executed_at TIMESTAMPTZ NOT NULL,
            status TEXT NOT NULL,
            response_status INTEGER,
            response_body TEXT,
            request_url TEXT NOT NULL,
            request_method TEXT NOT NULL,
            error TEXT,
            duration INTEGER NOT NULL,
            retry_attempt INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT cron_job_history_status_check
                CHECK (status IN ('success', 'failure'))
        );
        """
    )

    op.execute(
        "CREATE INDEX cron_job_history_job_executed_idx "
        "ON cron_job_history (cron_job_id, executed_at DESC);"
    )
    op.execute(
        "CREATE INDEX cron_job_history_org_executed_idx "
        "ON cron_job_history (organization_id, executed_at DESC);"
    )
    # Drives the retention purge.
    op.execute(
        "CREATE INDEX cron_job_history_created_idx ON cron_job_history (created_at);"
    )


def downgrade():
    op.execute("DROP TABLE IF EXISTS cron_job_history;")
    op.execute("DROP TABLE IF EXISTS cron_jobs;")
