# vote_server/routes.py

# Public and voter-facing JSON API. Administrative routes live in admin_routes.py.

from flask import Blueprint, current_app, jsonify, request

from vote_server import limiter
from vote_server.audit.audit_logger import AuditEventType
from vote_server.database.models import isoformat
from vote_server.errors import AuthError, ForbiddenError, NotFoundError, RateLimitError, ValidationError
from vote_server.services import get_services

api_bp = Blueprint('api', __name__, url_prefix='/api')


def client_ip():
    return request.remote_addr or 'unknown'


def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _guard(guard, key, actor, message):
    if not guard.hit(key):
        get_services().audit.log_security_event(actor, message, reason='rate_limited', ip=client_ip())
        raise RateLimitError(retry_after=guard.retry_after(key))


def _results_visible(election):
    return election is None or election.allow_public_results or election.status == 'published'


@api_bp.route('/health')
def health():
    return jsonify({'ok': True})


@api_bp.route('/candidates')
def candidates():
    services = get_services()
    return jsonify({'candidates': [c.to_dict() for c in services.candidates.list_candidates()]})


@api_bp.route('/results')
def results():
    services = get_services()
    if not _results_visible(services.elections.current()):
        raise ForbiddenError("results are not public for this election")
    return jsonify(services.results.public_tally())


@api_bp.route('/voting-progress')
def voting_progress():
    return jsonify({'progress': get_services().results.voting_progress()})


@api_bp.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['LOGIN_RATE_LIMIT'])
def login():
    services = get_services()
    data = json_body()
    email = data.get('email')
    password = data.get('password')
    ip = client_ip()

    if not email or not password:
        services.audit.log_security_event(email or 'unknown', 'Login attempt with missing credentials',
                                          reason='missing_fields', ip=ip)
        raise ValidationError("email and password required")

    _guard(services.login_guard, f"login:{ip}:{str(email).lower()}", email, 'Login rate limit exceeded')

    election = services.elections.get_active()
    try:
        user = services.credentials.verify(email, password, data.get('accessCode'),
                                           require_access_code=bool(election and election.require_access_code))
    except AuthError as e:
        services.audit.log_security_event(email, 'Failed login attempt', reason=e.reason, ip=ip)
        raise

    session, token = services.sessions.issue(user, ip)
    services.credentials.record_login(user)
    services.audit.append(AuditEventType.LOGIN, user.email, 'Successful login',
                          {'ip': ip, 'role': user.role, 'sessionId': session.id})

    return jsonify({
        'id': user.id,
        'email': user.email,
        'role': user.role,
        'hasVoted': bool(user.has_voted),
        'sessionToken': token,
        'expiresAt': isoformat(session.expires_at),
    })


@api_bp.route('/logout', methods=['POST'])
def logout():
    services = get_services()
    data = json_body()
    token = data.get('sessionToken')
    if token:
        session = services.sessions.invalidate(token)
        if session is not None:
            services.audit.append(AuditEventType.LOGIN, data.get('email') or 'unknown', 'User logged out',
                                  {'ip': client_ip(), 'sessionId': session.id})
    return jsonify({'success': True})


@api_bp.route('/status', methods=['POST'])
def status():
    services = get_services()
    data = json_body()
    email = data.get('email')
    password = data.get('password')
    if not email or not password:
        raise ValidationError("email+password required")

    _guard(services.login_guard, f"login:{client_ip()}:{str(email).lower()}", email,
           'Status check rate limit exceeded')
    try:
        user = services.credentials.verify(email, password)
    except AuthError as e:
        services.audit.log_security_event(email, 'Status check with invalid credentials',
                                          reason=e.reason, ip=client_ip())
        raise
    return jsonify({'hasVoted': bool(user.has_voted), 'role': user.role})


@api_bp.route('/vote', methods=['POST'])
@limiter.limit(lambda: current_app.config['VOTE_RATE_LIMIT'])
def vote():
    services = get_services()
    data = json_body()
    email = data.get('email')
    if email:
        _guard(services.vote_guard, f"vote:{str(email).lower()}", email, 'Vote rate limit exceeded')

    receipt = services.ledger.cast_vote(
        email=email,
        password=data.get('password'),
        candidate_id=data.get('candidateId'),
        access_code=data.get('accessCode'),
        session_token=data.get('sessionToken'),
        source_address=client_ip(),
    )
    return jsonify(receipt)


@api_bp.route('/elections')
def elections():
    services = get_services()
    return jsonify({'elections': [e.to_dict() for e in services.elections.list_elections()]})


@api_bp.route('/elections/active')
def active_election():
    election = get_services().elections.get_active()
    if election is None:
        raise NotFoundError("No active election found")
    return jsonify({'election': election.to_dict()})


@api_bp.route('/results/preliminary/<election_id>')
def preliminary_results(election_id):
    services = get_services()
    election = services.elections.get(election_id)
    if not _results_visible(election):
        raise ForbiddenError("results are not public for this election")
    return jsonify({'results': services.results.compute_preliminary(election.id)})


@api_bp.route('/results/published')
def published_results():
    services = get_services()
    return jsonify({'results': [r.to_dict() for r in services.results.published()]})


@api_bp.route('/results/published/<election_id>')
def published_result(election_id):
    result = get_services().results.latest_published(election_id)
    return jsonify({'results': result.to_dict()})
