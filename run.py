"""
GymFlow Application Entry Point
"""
from gymflow import create_app

app = create_app()

if __name__ == '__main__':
    # Development only - use Gunicorn in production
    app.run(host='0.0.0.0', port=5002, debug=False)
