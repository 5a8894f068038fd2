"""Initial schema

Revision ID: 001
Revises:
Create Date: 2025-10-12

WHAT: Creates the account, profile, second-factor, step-up challenge,
trusted device, linked Google identity, verification token and audit
log tables.

WHY: The step-up sign-in keeps all of its state on the server:
1. Pending sign-ins are StepUpChallenge rows bound to one device
2. Device verification flags are TrustedDevice rows that can be revoked
3. Second factors are MfaFactor rows (zero or one confirmed per account)

HOW: Enum columns store the enum member names, as SQLAlchemy's Enum type
does by default.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables with the indexes used by the sign-in lookups."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        # Opaque id used as token subject and admin grant target
        sa.Column('uid', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        # NULL for accounts created through Google sign-in
        sa.Column('hashed_password', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        # Custom claims copied into session tokens, e.g. {"admin": true}
        sa.Column('custom_claims', sa.JSON(), nullable=False),
        sa.Column('security_question', sa.String(length=255), nullable=True),
        # bcrypt hash of the trimmed, case-folded answer
        sa.Column('security_answer_hash', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_uid', 'users', ['uid'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('avatar_url', sa.String(length=1024), nullable=True),
        sa.Column('birthday', sa.Date(), nullable=True),
        sa.Column('phone_number', sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_profiles_id', 'profiles', ['id'])
    op.create_index('ix_profiles_user_id', 'profiles', ['user_id'], unique=True)

    op.create_table(
        'mfa_factors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('factor_uid', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('factor_type', sa.Enum('TOTP', 'PHONE', name='factortype'), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        # Fernet token of the base32 TOTP secret
        sa.Column('encrypted_secret', sa.Text(), nullable=True),
        sa.Column('phone_number', sa.String(length=32), nullable=True),
        sa.Column('pending_code_hash', sa.String(length=64), nullable=True),
        sa.Column('pending_code_sent_at', sa.DateTime(), nullable=True),
        sa.Column('last_totp_counter', sa.Integer(), nullable=True),
        # NULL while the enrollment is pending
        sa.Column('enrolled_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mfa_factors_id', 'mfa_factors', ['id'])
    op.create_index('ix_mfa_factors_factor_uid', 'mfa_factors', ['factor_uid'], unique=True)
    op.create_index('ix_mfa_factors_user_id', 'mfa_factors', ['user_id'])

    op.create_table(
        'step_up_challenges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('challenge_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column(
            'stage',
            sa.Enum('AWAITING_FACTOR', 'AWAITING_SECURITY_QUESTION', name='challengestage'),
            nullable=False,
        ),
        # 'password' or an identity provider name
        sa.Column('sign_in_method', sa.String(length=32), nullable=False, server_default='password'),
        sa.Column('factor_id', sa.Integer(), nullable=True),
        sa.Column('factor_satisfied_at', sa.DateTime(), nullable=True),
        sa.Column('sms_code_hash', sa.String(length=64), nullable=True),
        sa.Column('sms_sent_at', sa.DateTime(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        # Set on success, abort or lockout
        sa.Column('consumed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['factor_id'], ['mfa_factors.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_step_up_challenges_id', 'step_up_challenges', ['id'])
    op.create_index(
        'ix_step_up_challenges_challenge_id', 'step_up_challenges', ['challenge_id'], unique=True
    )
    op.create_index('ix_step_up_challenges_user_id', 'step_up_challenges', ['user_id'])
    op.create_index('ix_step_up_challenges_device_id', 'step_up_challenges', ['device_id'])

    op.create_table(
        'trusted_devices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('last_seen_at', sa.DateTime(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'device_id', name='uq_trusted_devices_user_device'),
    )
    op.create_index('ix_trusted_devices_id', 'trusted_devices', ['id'])
    op.create_index('ix_trusted_devices_user_id', 'trusted_devices', ['user_id'])
    op.create_index('ix_trusted_devices_device_id', 'trusted_devices', ['device_id'])

    op.create_table(
        'oauth_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.Enum('GOOGLE', name='oauthprovider'), nullable=False),
        # Provider's stable subject id; email is display only
        sa.Column('provider_user_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('picture_url', sa.String(length=2048), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'provider_user_id', name='uq_oauth_provider_user'),
    )
    op.create_index('ix_oauth_accounts_id', 'oauth_accounts', ['id'])
    op.create_index('ix_oauth_accounts_user_id', 'oauth_accounts', ['user_id'])

    op.create_table(
        'verification_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token', sa.String(length=255), nullable=False),
        sa.Column(
            'token_type',
            sa.Enum('EMAIL_VERIFICATION', 'PASSWORD_RESET', name='tokentype'),
            nullable=False,
        ),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_ip', sa.String(length=45), nullable=True),
        sa.Column('used_ip', sa.String(length=45), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_verification_tokens_id', 'verification_tokens', ['id'])
    op.create_index('ix_verification_tokens_token', 'verification_tokens', ['token'], unique=True)
    op.create_index('ix_verification_tokens_user_id', 'verification_tokens', ['user_id'])
    op.create_index(
        'ix_verification_tokens_user_type_expires',
        'verification_tokens',
        ['user_id', 'token_type', 'expires_at'],
    )

    audit_action_enum = sa.Enum(
        'LOGIN_SUCCESS', 'LOGIN_FAILURE', 'LOGOUT',
        'PASSWORD_RESET_REQUEST', 'PASSWORD_RESET_COMPLETE', 'TOKEN_REFRESH',
        'STEP_UP_REQUIRED', 'SECOND_FACTOR_SUCCESS', 'SECOND_FACTOR_FAILURE',
        'SECURITY_QUESTION_SUCCESS', 'SECURITY_QUESTION_FAILURE',
        'STEP_UP_LOCKED', 'STEP_UP_ABORTED',
        'DEVICE_TRUSTED', 'DEVICE_REVOKED',
        'ACCOUNT_CREATED', 'EMAIL_VERIFIED', 'EMAIL_VERIFICATION_SENT',
        'MFA_ENROLLED', 'MFA_UNENROLLED', 'SECURITY_QUESTION_SET', 'PROFILE_UPDATED',
        'OAUTH_ACCOUNT_LINKED', 'OAUTH_ACCOUNT_UNLINKED',
        'ADMIN_GRANTED', 'ADMIN_GRANT_DENIED',
        name='auditaction',
    )

    # Append-only: no update or delete path exists in the application
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('action', audit_action_enum, nullable=False),
        sa.Column('resource_type', sa.String(length=100), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_ip_address', 'audit_logs', ['ip_address'])


def downgrade() -> None:
    """Drop all tables and enum types in reverse dependency order."""
    op.drop_table('audit_logs')
    op.drop_table('verification_tokens')
    op.drop_table('oauth_accounts')
    op.drop_table('trusted_devices')
    op.drop_table('step_up_challenges')
    op.drop_table('mfa_factors')
    op.drop_table('profiles')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_name in ('auditaction', 'tokentype', 'oauthprovider', 'challengestage', 'factortype'):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
