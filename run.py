import click
from brankas import create_app, db
from brankas.models import ApiLog, SubmissionKey
from brankas.extensions import backend

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        'db': db,
        'ApiLog': ApiLog,
        'SubmissionKey': SubmissionKey,
    }


@app.cli.command('seed-boxes')
@click.option('--rows', default='ABCD', help='Row letters to create.')
@click.option('--per-row', default=6, help='Boxes per row.')
def seed_boxes_command(rows, per_row):
    """Insert a grid of available deposit boxes (A-01, A-02, ...)."""
    client = backend.client(app.config.get('BACKEND_SERVICE_KEY'))
    existing = {box['box_code'] for box in client.select('boxes', 'box_code')}
    created = 0
    for row in rows.upper():
        for number in range(1, per_row + 1):
            code = f"{row}-{number:02d}"
            if code in existing:
                continue
            client.insert('boxes', {'box_code': code, 'status': 'available'})
            created += 1
    print(f'{created} boxes created.')


if __name__ == '__main__':
    app.run(debug=True)
