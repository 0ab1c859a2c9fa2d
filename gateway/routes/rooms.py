from flask import Blueprint, request, jsonify, current_app

bp = Blueprint('rooms', __name__)


def get_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# --- Routes ---

@bp.route('/initialize', methods=['POST'])
def initialize():
    result = current_app.rooms.initialize()
    return jsonify({
        'success': True,
        'message': 'Game initialized',
        'registry': result.address,
        'txId': result.tx_id
    })


@bp.route('/create-room', methods=['POST'])
def create_room():
    data = get_body()
    result = current_app.rooms.create_room(
        data.get('creatorPublicKey'),
        staking_amount=data.get('stakingAmount')
    )
    return jsonify({
        'success': True,
        'roomId': str(result.room_id),
        'room': result.address,
        'txId': result.tx_id
    })


@bp.route('/join-room', methods=['POST'])
def join_room():
    data = get_body()
    result = current_app.rooms.join_room(data.get('roomId'), data.get('playerPublicKey'))
    return jsonify({
        'success': True,
        'message': 'Joined room successfully',
        'state': result.details['state'],
        'txId': result.tx_id
    })


@bp.route('/end-game', methods=['POST'])
def end_game():
    data = get_body()
    result = current_app.rooms.end_game(data.get('roomId'), data.get('winnerPublicKey'))
    return jsonify({
        'success': True,
        'message': 'Game ended successfully',
        'txId': result.tx_id
    })


@bp.route('/room/<room_id>')
def get_room(room_id):
    room = current_app.rooms.fetch_room(room_id)
    return jsonify({'success': True, 'roomData': room.to_dict()})


@bp.route('/registry')
def get_registry():
    registry = current_app.rooms.fetch_registry()
    return jsonify({'success': True, 'registry': registry.to_dict()})
