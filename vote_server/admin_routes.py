# vote_server/admin_routes.py

# Administrative JSON API. Every route requires a bearer session token
# belonging to a role that holds the route's permission.

from flask import Blueprint, g, jsonify, request

from vote_server import db
from vote_server.authentication.rbac import Permission, require_permission
from vote_server.database.models import Vote
from vote_server.errors import ValidationError
from vote_server.routes import json_body
from vote_server.services import get_services

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def actor():
    return g.current_user.email


# --- Voters ---------------------------------------------------------------

@admin_bp.route('/users')
@require_permission(Permission.MANAGE_VOTERS)
def list_users():
    users = get_services().credentials.list_users()
    return jsonify({'users': [u.to_dict() for u in users]})


@admin_bp.route('/users/detailed')
@require_permission(Permission.MANAGE_VOTERS)
def list_users_detailed():
    users = get_services().credentials.list_users()
    return jsonify({'users': [u.to_dict(detailed=True) for u in users]})


@admin_bp.route('/users', methods=['POST'])
@require_permission(Permission.MANAGE_VOTERS)
def create_user():
    user, credentials = get_services().credentials.create(json_body(), actor=actor())
    return jsonify({'user': user.to_dict(detailed=True), 'credentials': credentials}), 201


@admin_bp.route('/users/bulk-upload', methods=['POST'])
@admin_bp.route('/voters', methods=['POST'])
@require_permission(Permission.MANAGE_VOTERS)
def bulk_upload_users():
    voters = json_body().get('voters')
    results = get_services().credentials.bulk_create(voters, actor=actor())
    return jsonify({
        'success': True,
        'summary': {
            'total': len(voters),
            'created': len(results['created']),
            'errors': len(results['errors']),
            'duplicates': len(results['duplicates']),
        },
        'results': results,
    })


@admin_bp.route('/users/<user_id>', methods=['PUT'])
@require_permission(Permission.MANAGE_VOTERS)
def update_user(user_id):
    user = get_services().credentials.update(user_id, json_body(), actor=actor())
    return jsonify({'user': user.to_dict(detailed=True)})


@admin_bp.route('/users/<user_id>/eligibility', methods=['PUT'])
@require_permission(Permission.MANAGE_VOTERS)
def update_eligibility(user_id):
    data = json_body()
    if 'isEligible' not in data:
        raise ValidationError("isEligible required")
    user = get_services().credentials.set_eligibility(user_id, data['isEligible'], actor=actor())
    return jsonify({'user': user.to_dict(detailed=True)})


@admin_bp.route('/users/<user_id>', methods=['DELETE'])
@require_permission(Permission.MANAGE_VOTERS)
def delete_user(user_id):
    get_services().credentials.delete(user_id, actor=actor())
    return jsonify({'success': True})


@admin_bp.route('/users/<user_id>/regenerate-credentials', methods=['POST'])
@require_permission(Permission.MANAGE_VOTERS)
def regenerate_credentials(user_id):
    credentials = get_services().credentials.regenerate_credentials(user_id, actor=actor())
    return jsonify({'credentials': credentials})


@admin_bp.route('/votes')
@require_permission(Permission.VIEW_STATISTICS)
def list_votes():
    services = get_services()
    votes = db.session.query(Vote).order_by(Vote.timestamp.asc()).all()
    return jsonify({
        'votes': [v.to_dict() for v in votes],
        'candidates': [c.to_dict() for c in services.candidates.list_candidates()],
    })


# --- Candidates -----------------------------------------------------------

@admin_bp.route('/candidates', methods=['POST'])
@require_permission(Permission.MANAGE_CANDIDATES)
def create_candidate():
    candidate = get_services().candidates.create(json_body(), actor=actor())
    return jsonify({'candidate': candidate.to_dict()})


@admin_bp.route('/candidates/extended', methods=['POST'])
@require_permission(Permission.MANAGE_CANDIDATES)
def create_candidate_extended():
    candidate = get_services().candidates.create(json_body(), extended=True, actor=actor())
    return jsonify({'candidate': candidate.to_dict()})


@admin_bp.route('/candidates/<candidate_id>', methods=['PUT'])
@require_permission(Permission.MANAGE_CANDIDATES)
def update_candidate(candidate_id):
    candidate = get_services().candidates.update(candidate_id, json_body(), actor=actor())
    return jsonify({'candidate': candidate.to_dict()})


@admin_bp.route('/candidates/extended/<candidate_id>', methods=['PUT'])
@require_permission(Permission.MANAGE_CANDIDATES)
def update_candidate_extended(candidate_id):
    candidate = get_services().candidates.update(candidate_id, json_body(), extended=True, actor=actor())
    return jsonify({'candidate': candidate.to_dict()})


@admin_bp.route('/candidates/<candidate_id>', methods=['DELETE'])
@require_permission(Permission.MANAGE_CANDIDATES)
def delete_candidate(candidate_id):
    get_services().candidates.delete(candidate_id, actor=actor())
    return jsonify({'ok': True})


# --- Elections ------------------------------------------------------------

@admin_bp.route('/elections', methods=['POST'])
@require_permission(Permission.MANAGE_ELECTIONS)
def create_election():
    data = json_body()
    election = get_services().elections.create(data, actor=actor(), confirm_reset=data.get('confirmReset'))
    return jsonify({'election': election.to_dict()}), 201


@admin_bp.route('/elections/<election_id>')
@require_permission(Permission.MANAGE_ELECTIONS)
def get_election(election_id):
    election = get_services().elections.get(election_id)
    return jsonify({'election': election.to_dict()})


@admin_bp.route('/elections/<election_id>', methods=['PUT'])
@require_permission(Permission.MANAGE_ELECTIONS)
def update_election(election_id):
    election = get_services().elections.update(election_id, json_body(), actor=actor())
    return jsonify({'election': election.to_dict()})


@admin_bp.route('/elections/<election_id>/status', methods=['PUT'])
@require_permission(Permission.MANAGE_ELECTIONS)
def change_election_status(election_id):
    election = get_services().elections.change_status(election_id, json_body().get('status'), actor=actor())
    return jsonify({'election': election.to_dict()})


@admin_bp.route('/elections/<election_id>/publish', methods=['POST'])
@require_permission(Permission.PUBLISH_RESULTS)
def publish_election(election_id):
    result = get_services().results.publish(election_id, published_by=actor())
    return jsonify({
        'success': True,
        'results': result.to_dict(),
        'message': 'Results published successfully',
    })


@admin_bp.route('/elections/<election_id>', methods=['DELETE'])
@require_permission(Permission.MANAGE_ELECTIONS)
def delete_election(election_id):
    get_services().elections.delete(election_id, actor=actor())
    return jsonify({'success': True, 'message': 'Election deleted successfully'})


@admin_bp.route('/results/<result_id>/verify')
@require_permission(Permission.PUBLISH_RESULTS)
def verify_result(result_id):
    return jsonify(get_services().results.verify_published(result_id))


# --- Audit and statistics -------------------------------------------------

@admin_bp.route('/audit-logs')
@require_permission(Permission.VIEW_AUDIT_LOGS)
def audit_logs():
    services = get_services()
    limit = services.validator.parse_int(request.args.get('limit'), 'limit', default=100, minimum=1, maximum=1000)
    offset = services.validator.parse_int(request.args.get('offset'), 'offset', default=0, minimum=0)
    entries, total = services.audit.query(event_type=request.args.get('type'), offset=offset, limit=limit)
    return jsonify({
        'logs': [e.to_dict() for e in entries],
        'total': total,
        'hasMore': offset + limit < total,
    })


@admin_bp.route('/audit-logs/detailed')
@require_permission(Permission.VIEW_AUDIT_LOGS)
def audit_logs_detailed():
    services = get_services()
    args = request.args
    page = services.validator.parse_int(args.get('page'), 'page', default=1, minimum=1)
    limit = services.validator.parse_int(args.get('limit'), 'limit', default=50, minimum=1, maximum=1000)
    start = services.validator.parse_datetime(args['startDate'], 'startDate') if args.get('startDate') else None
    end = services.validator.parse_datetime(args['endDate'], 'endDate') if args.get('endDate') else None
    entries, total = services.audit.query(event_type=args.get('type'), actor=args.get('actor'),
                                          start=start, end=end, offset=(page - 1) * limit, limit=limit)
    return jsonify({
        'logs': [e.to_dict() for e in entries],
        'pagination': {
            'current': page,
            'limit': limit,
            'total': total,
            'pages': (total + limit - 1) // limit,
        },
        'filters': {k: args.get(k) for k in ('type', 'actor', 'startDate', 'endDate')},
    })


@admin_bp.route('/audit-logs/stats')
@require_permission(Permission.VIEW_AUDIT_LOGS)
def audit_log_stats():
    return jsonify({'stats': get_services().audit.statistics()})


@admin_bp.route('/audit-logs/verify')
@require_permission(Permission.VIEW_AUDIT_LOGS)
def audit_log_verify():
    return jsonify(get_services().audit.verify_log_integrity())


@admin_bp.route('/voting-stats')
@require_permission(Permission.VIEW_STATISTICS)
def voting_stats():
    return jsonify({'stats': get_services().results.voting_statistics()})
