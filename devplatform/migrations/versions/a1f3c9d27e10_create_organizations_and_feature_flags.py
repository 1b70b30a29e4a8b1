from alembic import op


# revision identifiers, used by Alembic.
revision = "create_organizations_and_feature_flags"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create organizations and feature_flags tables."""
    op.execute(
        """
        CREATE TABLE organizations (
            id UUID PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            api_key_hash TEXT NOT NULL UNIQUE,
            active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE feature_flags (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL
                REFERENCES organizations(id) ON DELETE CASCADE,
            key TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'active',
            enabled BOOLEAN NOT NULL DEFAULT FALSE,
            rollout_type TEXT NOT NULL DEFAULT 'boolean',
            rollout_percentage INTEGER NOT NULL DEFAULT 100,
            target_users TEXT[] NOT NULL DEFAULT '{}',
            targeting_rules JSONB NOT NULL DEFAULT '[]',
            tags TEXT[] NOT NULL DEFAULT '{}',
            default_value BOOLEAN NOT NULL DEFAULT FALSE,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT feature_flags_organization_key_unique
                UNIQUE (organization_id, key),
            CONSTRAINT feature_flags_status_check
                CHECK (status IN ('active', 'inactive', 'archived')),
            CONSTRAINT feature_flags_rollout_type_check
                CHECK (rollout_type IN ('boolean', 'percentage', 'user-list')),
            CONSTRAINT feature_flags_rollout_percentage_check
                CHECK (rollout_percentage BETWEEN 0 AND 100)
        );
        """
    )

    op.execute(
        "CREATE INDEX feature_flags_org_created_idx "
        "ON feature_flags (organization_id, created_at DESC);"
    )
    op.execute("CREATE INDEX feature_flags_tags_idx ON feature_flags USING GIN (tags);")


def downgrade():
    op.execute("DROP TABLE IF EXISTS feature_flags;")
    op.execute("DROP TABLE IF EXISTS organizations;")
