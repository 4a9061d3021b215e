#!/usr/bin/env python3
"""
Development entry point for the FairMeet API
"""

from fairmeet.app import DEV_PORT, app

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=DEV_PORT)
