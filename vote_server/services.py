# vote_server/services.py

# Per-application service graph, built once in create_app and stored on
# app.extensions so request handlers and the scheduler share one instance.

from flask import current_app

from vote_server.audit.audit_logger import AuditLogger
from vote_server.authentication.credentials import CredentialStore
from vote_server.authentication.rbac import RBACService
from vote_server.authentication.sessions import SessionManager
from vote_server.elections.lifecycle import ElectionLifecycleManager
from vote_server.encryption.password_hashing import PasswordHashingService
from vote_server.operations.scheduler import Scheduler
from vote_server.results.engine import ResultsEngine
from vote_server.security.input_validator import InputValidator
from vote_server.security.rate_guard import RateGuard
from vote_server.security.token_manager import TokenManager
from vote_server.voting.candidates import CandidateRegistry
from vote_server.voting.ledger import VoteLedger

EXTENSION_KEY = 'vote_server'


class Services:
    def __init__(self, app):
        config = app.config
        self.validator = InputValidator()
        self.rbac = RBACService()
        self.hasher = PasswordHashingService(
            time_cost=config['ARGON2_TIME_COST'],
            memory_cost=config['ARGON2_MEMORY_COST'],
            parallelism=config['ARGON2_PARALLELISM'],
        )
        self.audit = AuditLogger(signing_key_pem=config.get('AUDIT_SIGNING_KEY'),
                                 key_path=config.get('AUDIT_SIGNING_KEY_FILE'))
        self.login_guard = RateGuard(max_attempts=config['LOGIN_MAX_ATTEMPTS'],
                                     window_seconds=config['LOGIN_WINDOW_SECONDS'],
                                     enabled=config['RATE_GUARD_ENABLED'])
        self.vote_guard = RateGuard(max_attempts=config['VOTE_MAX_ATTEMPTS'],
                                    window_seconds=config['VOTE_WINDOW_SECONDS'],
                                    enabled=config['RATE_GUARD_ENABLED'])
        self.credentials = CredentialStore(self.hasher, self.audit, self.validator)
        self.sessions = SessionManager(TokenManager(),
                                       ttl=config['SESSION_TTL'],
                                       policy=config['SESSION_POLICY'],
                                       enforce_expiry=config['SESSION_EXPIRY_ENFORCED'])
        self.elections = ElectionLifecycleManager(self.audit, self.validator)
        self.candidates = CandidateRegistry(self.audit, self.validator)
        self.ledger = VoteLedger(self.credentials, self.sessions, self.elections, self.rbac, self.audit)
        self.results = ResultsEngine(self.elections, self.candidates, self.audit)
        self.scheduler = Scheduler(app, self.elections, self.results, self.audit,
                                   interval_seconds=config['SCHEDULER_INTERVAL_SECONDS'],
                                   initial_delay_seconds=config['SCHEDULER_INITIAL_DELAY_SECONDS'])


def init_services(app):
    services = Services(app)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services():
    return current_app.extensions[EXTENSION_KEY]
